from dataclasses import dataclass

from .errors import BlobIntegrityError
from .storage_protocols import RemoteObject


@dataclass(frozen=True)
class BlobMetadata:
    name: str
    size_in_bytes: int


def project_metadata(remote: RemoteObject, path_to_remove: str | None) -> BlobMetadata:
    """
    Map a remote descriptor to BlobMetadata, stripping `path_to_remove` from
    the front of its name when given.
    """
    if remote.size is None:
        raise BlobIntegrityError(
            f"Listed blob [{remote.name}] has no size", key=remote.name
        )
    name = remote.name
    if path_to_remove:
        if not name.startswith(path_to_remove):
            raise BlobIntegrityError(
                f"Listed blob [{name}] is outside of path [{path_to_remove}]",
                key=name,
            )
        name = name[len(path_to_remove) :]
    return BlobMetadata(name=name, size_in_bytes=int(remote.size))
