import enum

class UserRole(str, enum.Enum):
    admin = "admin"
    warehouse = "warehouse"
    driver = "driver"
    branch_user = "branch_user"

# Roles que pueden ver y modificar niveles de tanques del almacen
WAREHOUSE_ROLES = (UserRole.admin, UserRole.warehouse)
