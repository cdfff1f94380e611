from pydantic import BaseModel
from oilstock.models.association import UserRole, WAREHOUSE_ROLES

class CurrentUser(BaseModel):
    """ Usuario que hace la peticion; su nombre queda como 'updatedBy' en los logs """
    name: str
    role: UserRole

    @property
    def can_manage_warehouse(self) -> bool:
        return self.role in WAREHOUSE_ROLES
