"""Per-tenant upload directories.

Layout::

    <uploads_dir>/client_<id>/{logos,backgrounds,link-images,documents,photos}/

Directories are only ever created alongside a namespace (by the
provisioner or by the repair routines), never on their own.
"""

from collections.abc import Iterable
from pathlib import Path

from estate.core.logging import get_logger
from estate.database.identifiers import client_schema_name, parse_client_schema_name

logger = get_logger(__name__)

CLIENT_SUBDIRECTORIES = ("logos", "backgrounds", "link-images", "documents", "photos")


class DirectoryProvisioner:
    """Creates upload trees mirroring client namespaces."""

    def __init__(self, root: Path | str) -> None:
        """Initialize the provisioner.

        Args:
            root: Uploads root directory (``uploads`` by default in settings).
        """
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def client_directory(self, tenant_id: int) -> Path:
        """Path of a tenant's upload tree (not created)."""
        return self._root / client_schema_name(tenant_id)

    def initialize_upload_root(self) -> Path:
        """Create the uploads root if needed."""
        self._root.mkdir(parents=True, exist_ok=True)
        return self._root

    def ensure_client_directories(self, tenant_id: int) -> Path:
        """Create ``client_<id>/`` and its fixed subdirectories.

        Existing directories are left untouched.

        Returns:
            The tenant's upload directory.

        Raises:
            OSError: If a directory cannot be created.
        """
        client_dir = self.client_directory(tenant_id)
        for name in CLIENT_SUBDIRECTORIES:
            (client_dir / name).mkdir(parents=True, exist_ok=True)

        logger.debug("client_directories_ready", path=str(client_dir))
        return client_dir

    def client_subdirectory(self, tenant_id: int, name: str) -> Path:
        """Ensure and return one subdirectory of a tenant's upload tree.

        Raises:
            ValueError: If ``name`` is not one of the fixed subdirectories.
        """
        if name not in CLIENT_SUBDIRECTORIES:
            raise ValueError(
                f"Unknown upload subdirectory {name!r}. "
                f"Must be one of {', '.join(CLIENT_SUBDIRECTORIES)}"
            )
        path = self.client_directory(tenant_id) / name
        path.mkdir(parents=True, exist_ok=True)
        return path

    def sync_with_namespaces(self, namespaces: Iterable[str]) -> list[Path]:
        """Create upload trees for every ``client_<id>`` namespace given.

        Names that are not client namespaces are ignored.
        """
        created: list[Path] = []
        for namespace in namespaces:
            tenant_id = parse_client_schema_name(namespace)
            if tenant_id is None:
                continue
            created.append(self.ensure_client_directories(tenant_id))

        logger.info("client_directories_synced", count=len(created))
        return created
