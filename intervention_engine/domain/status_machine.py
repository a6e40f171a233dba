from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Tuple

from intervention_engine.errors import InvalidTransition, StaleState
from intervention_engine.policies import GESTIONNAIRE, LOCATAIRE, PRESTATAIRE, normalize_role


DEMANDE = "demande"
REJETEE = "rejetee"
APPROUVEE = "approuvee"
DEMANDE_DE_DEVIS = "demande_de_devis"
PLANIFICATION = "planification"
PLANIFIEE = "planifiee"
EN_COURS = "en_cours"
CLOTUREE_PAR_PRESTATAIRE = "cloturee_par_prestataire"
CLOTUREE_PAR_LOCATAIRE = "cloturee_par_locataire"
CLOTUREE_PAR_GESTIONNAIRE = "cloturee_par_gestionnaire"
ANNULEE = "annulee"

STATUSES: Tuple[str, ...] = (
    DEMANDE,
    REJETEE,
    APPROUVEE,
    DEMANDE_DE_DEVIS,
    PLANIFICATION,
    PLANIFIEE,
    EN_COURS,
    CLOTUREE_PAR_PRESTATAIRE,
    CLOTUREE_PAR_LOCATAIRE,
    CLOTUREE_PAR_GESTIONNAIRE,
    ANNULEE,
)

INITIAL_STATUS = DEMANDE
TERMINAL_STATUSES: FrozenSet[str] = frozenset({REJETEE, ANNULEE, CLOTUREE_PAR_GESTIONNAIRE})

# Placeholder target resolved from the contest routing policy.
CONTEST_TARGET = "<contest_target>"
CONTEST_TARGET_CHOICES: FrozenSet[str] = frozenset({EN_COURS, PLANIFICATION})

G = frozenset({GESTIONNAIRE})
P = frozenset({PRESTATAIRE})
L = frozenset({LOCATAIRE})


@dataclass(frozen=True)
class TransitionRule:
    status: str
    action: str
    roles: FrozenSet[str]
    target: str | None = None  # None keeps the current status
    requires_comment: bool = False
    confirmation_key: str | None = None


_RULES: List[TransitionRule] = [
    TransitionRule(DEMANDE, "approve", G, APPROUVEE),
    TransitionRule(DEMANDE, "reject", G, REJETEE, requires_comment=True, confirmation_key="reject"),
    TransitionRule(APPROUVEE, "request_quotes", G, DEMANDE_DE_DEVIS),
    TransitionRule(APPROUVEE, "start_planning", G, PLANIFICATION),
    TransitionRule(DEMANDE_DE_DEVIS, "request_quotes", G),
    TransitionRule(DEMANDE_DE_DEVIS, "approve_quote", G, PLANIFICATION, confirmation_key="approve_quote"),
    TransitionRule(DEMANDE_DE_DEVIS, "reject_quote", G, requires_comment=True),
    TransitionRule(DEMANDE_DE_DEVIS, "submit_quote", P),
    TransitionRule(DEMANDE_DE_DEVIS, "edit_quote", P),
    TransitionRule(DEMANDE_DE_DEVIS, "cancel_quote", P),
    TransitionRule(DEMANDE_DE_DEVIS, "view_quote", P),
    TransitionRule(PLANIFICATION, "propose_slots", G | P),
    TransitionRule(PLANIFICATION, "respond_slot", G | P | L),
    TransitionRule(PLANIFICATION, "confirm_slot", L | G, PLANIFIEE),
    TransitionRule(PLANIFICATION, "reject_quote", G, requires_comment=True),
    TransitionRule(PLANIFICATION, "view_quote", P),
    TransitionRule(PLANIFIEE, "start_work", P, EN_COURS),
    TransitionRule(PLANIFIEE, "complete_work", P, CLOTUREE_PAR_PRESTATAIRE),
    TransitionRule(PLANIFIEE, "reschedule", G | L, PLANIFICATION, requires_comment=True),
    TransitionRule(EN_COURS, "complete_work", P, CLOTUREE_PAR_PRESTATAIRE),
    TransitionRule(CLOTUREE_PAR_PRESTATAIRE, "validate_work", L, CLOTUREE_PAR_LOCATAIRE),
    TransitionRule(
        CLOTUREE_PAR_PRESTATAIRE,
        "contest_work",
        L,
        CONTEST_TARGET,
        requires_comment=True,
        confirmation_key="contest_work",
    ),
    TransitionRule(CLOTUREE_PAR_PRESTATAIRE, "remind_tenant", G),
    TransitionRule(CLOTUREE_PAR_LOCATAIRE, "finalize", G, CLOTUREE_PAR_GESTIONNAIRE, confirmation_key="finalize"),
]

_RULES.extend(
    TransitionRule(status, "cancel", G, ANNULEE, requires_comment=True, confirmation_key="cancel")
    for status in STATUSES
    if status not in TERMINAL_STATUSES
)

TRANSITION_TABLE: Tuple[TransitionRule, ...] = tuple(_RULES)


def is_terminal(status: str | None) -> bool:
    return str(status or "") in TERMINAL_STATUSES


def all_actions() -> List[str]:
    seen: List[str] = []
    for rule in TRANSITION_TABLE:
        if rule.action not in seen:
            seen.append(rule.action)
    return seen


class StatusStateMachine:
    def __init__(self, contest_target: str = EN_COURS) -> None:
        if contest_target not in CONTEST_TARGET_CHOICES:
            raise ValueError(f"contest target must be one of {sorted(CONTEST_TARGET_CHOICES)}, got {contest_target!r}")
        self.contest_target = contest_target
        self._rules: Dict[Tuple[str, str], TransitionRule] = {
            (rule.status, rule.action): rule for rule in TRANSITION_TABLE
        }

    def rules_for(self, status: str | None, role: str | None) -> List[TransitionRule]:
        normalized_role = normalize_role(role)
        return [
            rule
            for rule in TRANSITION_TABLE
            if rule.status == status and normalized_role in rule.roles
        ]

    def actions_for(self, status: str | None, role: str | None) -> List[str]:
        return [rule.action for rule in self.rules_for(status, role)]

    def can(self, status: str | None, action: str, role: str | None) -> bool:
        rule = self._rules.get((str(status or ""), str(action or "")))
        return rule is not None and normalize_role(role) in rule.roles

    def rule(self, status: str | None, action: str, role: str | None) -> TransitionRule:
        rule = self._rules.get((str(status or ""), str(action or "")))
        if rule is None or normalize_role(role) not in rule.roles:
            raise InvalidTransition(status=status, action=action, role=role)
        return rule

    def target_of(self, rule: TransitionRule) -> str:
        if rule.target is None:
            return rule.status
        if rule.target == CONTEST_TARGET:
            return self.contest_target
        return rule.target

    def transition(self, current_status: str, action: str, role: str, expected_status: str) -> str:
        """Compute the status reached by ``action``.

        ``expected_status`` is the status the caller read when it decided to
        act; a mismatch with ``current_status`` means someone else moved the
        intervention first.
        """
        if current_status != expected_status:
            raise StaleState(expected=expected_status, actual=current_status)
        return self.target_of(self.rule(current_status, action, role))
