from .assignment_repository import AssignmentRepository
from .base import BaseRepository, TeamScopeRequiredError
from .closure_repository import ClosureRepository
from .intervention_repository import InterventionRepository
from .quote_repository import QuoteRepository
from .quote_request_repository import QuoteRequestRepository
from .status_event_repository import StatusEventRepository
from .time_slot_repository import TimeSlotRepository
