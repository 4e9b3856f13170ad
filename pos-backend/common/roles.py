from django.db import models

class TenantRole(models.TextChoices):
    OWNER      = "owner",      "Owner"
    ADMIN      = "admin",      "Admin"
    MANAGER    = "manager",    "Manager"
    CASHIER    = "cashier",    "Cashier"
    AUDITOR    = "auditor",    "Auditor"


# roles allowed to move points by hand (adjust / expire) and to delete clients
LEDGER_MANAGER_ROLES = [TenantRole.OWNER, TenantRole.ADMIN, TenantRole.MANAGER]
# roles allowed to change the points program
PROGRAM_ADMIN_ROLES = [TenantRole.OWNER, TenantRole.ADMIN]
