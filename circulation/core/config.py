import logging
import os

# -----------------------------
# Configuration & Logging
# -----------------------------
DATABASE_URL = os.getenv("CIRCULATION_DB", "sqlite:///./circulation.db")
LOG_LEVEL = os.getenv("CIRCULATION_LOG", "INFO")
SQLITE_TIMEOUT = float(os.getenv("CIRCULATION_SQLITE_TIMEOUT", "30"))

# roles allowed to delete assignments / reopen closed ones
PRIVILEGED_ROLES = frozenset(
    r.strip() for r in os.getenv("CIRCULATION_PRIVILEGED_ROLES", "Admin,Technician").split(",") if r.strip()
)
ADMIN_ROLES = frozenset(
    r.strip() for r in os.getenv("CIRCULATION_ADMIN_ROLES", "Admin").split(",") if r.strip()
)

# role given to users created without an explicit grant
DEFAULT_ROLE = "Staff"

ASSIGNMENT_SEQ_WIDTH = 4
TRANSACTION_SEQ_WIDTH = 5

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def configure_logging(level=None):
    logging.basicConfig(level=level or LOG_LEVEL, format=LOG_FORMAT)
    return logging.getLogger("circulation")
