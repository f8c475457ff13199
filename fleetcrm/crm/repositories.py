from __future__ import annotations

from typing import Any

from sqlalchemy import Select

from fleetcrm.core.context import ActorUser
from fleetcrm.core.database import Base
from fleetcrm.crm.models import Company, SalesOpportunity, Visit


class ScopedRepository:
    """Restricts queries to the rows a BDM owns; management sees everything."""

    model: type[Base]
    owner_field: str

    def owner_column(self) -> Any:
        return getattr(self.model, self.owner_field)

    def apply_scope_query(self, query: Select[Any], actor: ActorUser) -> Select[Any]:
        if actor.is_management:
            return query
        return query.where(self.owner_column() == actor.user_id)


class CompanyRepository(ScopedRepository):
    model = Company
    owner_field = "assigned_bdm"


class VisitRepository(ScopedRepository):
    model = Visit
    owner_field = "user_id"


class SalesOpportunityRepository(ScopedRepository):
    model = SalesOpportunity
    owner_field = "user_id"
