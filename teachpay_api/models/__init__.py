"""SQLAlchemy models of the teaching compensation service."""
import importlib

# referenced tables first: years and masters, then curriculum, work and money
MODEL_MODULES = (
    "academic",
    "master",
    "curriculum",
    "assignment",
    "rates",
    "salary",
)


def load_all():
    """Import every model module so its tables register on db.metadata."""
    return [importlib.import_module(f"{__name__}.{name}") for name in MODEL_MODULES]
