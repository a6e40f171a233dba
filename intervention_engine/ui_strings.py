from __future__ import annotations

from typing import Dict, List


FRIENDLY_TERMS: Dict[str, str] = {
    "app_name": "Interventions",
    "intervention": "Intervention",
    "quote": "Estimation",
    "quote_request": "Demande d'estimation",
    "time_slot": "Creneau",
    "gestionnaire": "Gestionnaire",
    "prestataire": "Prestataire",
    "locataire": "Locataire",
}


STATUS_ITEMS: List[Dict[str, str]] = [
    {"key": "demande", "label": "Demande", "description": "Demande recue, en attente de traitement."},
    {"key": "rejetee", "label": "Rejetee", "description": "Demande refusee par le gestionnaire."},
    {"key": "approuvee", "label": "Approuvee", "description": "Demande acceptee, a organiser."},
    {"key": "demande_de_devis", "label": "Demande d'estimation", "description": "Estimations sollicitees aupres des prestataires."},
    {"key": "planification", "label": "Planification", "description": "Recherche d'un creneau commun."},
    {"key": "planifiee", "label": "Planifiee", "description": "Creneau confirme."},
    {"key": "en_cours", "label": "En cours", "description": "Travaux en cours d'execution."},
    {"key": "cloturee_par_prestataire", "label": "Terminee (prestataire)", "description": "Rapport de fin de travaux envoye."},
    {"key": "cloturee_par_locataire", "label": "Validee (locataire)", "description": "Travaux valides par le locataire."},
    {"key": "cloturee_par_gestionnaire", "label": "Cloturee", "description": "Intervention finalisee et archivee."},
    {"key": "annulee", "label": "Annulee", "description": "Intervention annulee."},
]


ACTION_LABELS: Dict[str, str] = {
    "approve": "Approuver",
    "reject": "Rejeter",
    "request_quotes": "Demander des estimations",
    "start_planning": "Planifier",
    "submit_quote": "Soumettre une estimation",
    "edit_quote": "Modifier l'estimation",
    "cancel_quote": "Annuler l'estimation",
    "view_quote": "Voir l'estimation",
    "approve_quote": "Valider une estimation",
    "reject_quote": "Refuser une estimation",
    "propose_slots": "Proposer des creneaux",
    "respond_slot": "Repondre aux creneaux",
    "confirm_slot": "Valider un creneau",
    "start_work": "Demarrer les travaux",
    "complete_work": "Marquer comme termine",
    "reschedule": "Replanifier",
    "validate_work": "Valider les travaux",
    "contest_work": "Contester",
    "remind_tenant": "Relancer le locataire",
    "finalize": "Finaliser",
    "cancel": "Annuler",
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "error": {
        "unexpected_error": "Impossible de terminer l'operation.",
        "action_invalid": "Action invalide.",
        "invalid_transition": "Cette action n'est pas autorisee pour le statut actuel.",
        "stale_state": "L'intervention a ete modifiee entre-temps. Rechargez puis reessayez.",
        "validation_failed": "Certains champs sont manquants ou invalides.",
        "action_disabled": "Cette action est temporairement indisponible.",
        "permission_denied": "Vous n'avez pas acces a cette intervention.",
        "identity_required": "Identite de l'utilisateur requise.",
        "not_found": "Element introuvable.",
        "intervention_not_found": "Intervention introuvable.",
        "quote_not_found": "Estimation introuvable.",
        "time_slot_not_found": "Creneau introuvable.",
        "no_eligible_provider": "Aucun prestataire eligible pour cette demande.",
        "quote_already_accepted": "Une estimation a deja ete acceptee pour cette intervention.",
        "comment_required": "Un commentaire est obligatoire pour cette action.",
        "confirmation_required": "Confirmation requise pour cette action.",
        "own_slot": "Vous ne pouvez pas repondre a votre propre creneau.",
        "slot_rejected_by_confirmer": "Vous avez refuse ce creneau.",
        "quote_not_owned": "Cette estimation appartient a un autre prestataire.",
        "provider_not_solicited": "Aucune demande d'estimation ne vous a ete adressee.",
    },
    "success": {
        "intervention_created": "Intervention creee.",
        "transition_applied": "Statut mis a jour.",
        "quotes_requested": "Demandes d'estimation envoyees.",
        "quote_submitted": "Estimation envoyee.",
        "quote_updated": "Estimation modifiee.",
        "quote_cancelled": "Estimation annulee.",
        "quote_reviewed": "Estimation traitee.",
        "slots_proposed": "Creneaux proposes.",
        "slot_response_saved": "Reponse enregistree.",
        "slot_response_withdrawn": "Reponse retiree.",
        "slot_confirmed": "Creneau confirme.",
        "work_completion_saved": "Rapport de fin de travaux enregistre.",
        "tenant_validation_saved": "Validation enregistree.",
        "finalization_saved": "Intervention finalisee.",
    },
    "confirm": {
        "cancel": "Cette intervention sera annulee.",
        "reject": "La demande sera definitivement rejetee.",
        "approve_quote": "Les autres estimations en attente seront traitees selon la politique en vigueur.",
        "finalize": "L'intervention sera cloturee et archivee.",
        "contest_work": "Le prestataire devra reprendre les travaux.",
    },
    "disabled": {
        "no_quote_to_review": "Toutes les estimations ont deja ete traitees.",
        "no_quote_received": "Aucune estimation recue pour le moment.",
        "no_open_slot": "Aucun creneau propose pour le moment.",
    },
    "auto": {
        "sibling_rejected": "Une autre estimation a ete retenue pour cette intervention.",
    },
    "ineligible": {
        "quote_pending": "a deja une estimation en attente",
        "quote_sent": "a deja envoye une estimation",
        "quote_accepted": "a deja une estimation acceptee",
        "request_outstanding": "a deja une demande d'estimation en attente",
    },
}


def status_keys() -> List[str]:
    return [item["key"] for item in STATUS_ITEMS]


def build_status_labels() -> Dict[str, str]:
    return {item["key"]: item["label"] for item in STATUS_ITEMS}


def get_message(category: str, key: str, default: str | None = None) -> str:
    value = MESSAGES.get(category, {}).get(key)
    if value is not None:
        return value
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)


def confirm_message(key: str, default: str | None = None) -> str:
    return get_message("confirm", key, default)


def disabled_message(key: str, default: str | None = None) -> str:
    return get_message("disabled", key, default)


def auto_message(key: str, default: str | None = None) -> str:
    return get_message("auto", key, default)


def ineligible_message(key: str, default: str | None = None) -> str:
    return get_message("ineligible", key, default)


def action_label(action: str, fallback: str | None = None) -> str:
    label = ACTION_LABELS.get(action)
    if label:
        return label
    if fallback is not None:
        return fallback
    return action


def frontend_bundle() -> Dict[str, object]:
    return {
        "terms": FRIENDLY_TERMS,
        "statuses": STATUS_ITEMS,
        "action_labels": ACTION_LABELS,
    }
