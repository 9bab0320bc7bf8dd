"""Material lifecycle management (creation, inspection, cascading deletes)."""
from coursemind.materials.manager import MaterialManager

__all__ = ["MaterialManager"]
