"""
FinGraph Core Enumerations

Enumeration types shared across the recalculation core.
"""

from enum import Enum


class DomainNode(str, Enum):
    """
    The 5 recomputable financial domains.

    Declaration order is significant: it is the tie-break order used
    when two domains are equally ready to be recomputed.

    Flow: Tax / Compta / Immobilier -> Previsions -> Decideur
    """
    TAX = "Tax"                  # Personal tax returns and slips
    COMPTA = "Compta"            # Corporate bookkeeping
    IMMOBILIER = "Immobilier"    # Rental real estate
    PREVISIONS = "Previsions"    # Forecasts and projections
    DECIDEUR = "Decideur"        # Decision layer

    @property
    def label(self) -> str:
        return DOMAIN_LABELS[self]

    @classmethod
    def declared(cls) -> list:
        """All nodes in declared order."""
        return list(cls)


DOMAIN_LABELS = {
    DomainNode.TAX: "Fiscalité personnelle",
    DomainNode.COMPTA: "Comptabilité",
    DomainNode.IMMOBILIER: "Immobilier locatif",
    DomainNode.PREVISIONS: "Prévisions",
    DomainNode.DECIDEUR: "Décideur",
}


class RecalcStatus(str, Enum):
    """Outcome of a single node recompute within a run."""
    COMPLETED = "completed"
    FAILED = "failed"


class AuditEventType(str, Enum):
    """Types of audit events written to the event log."""
    RECALC = "recalc"
    MUTATION = "mutation"
