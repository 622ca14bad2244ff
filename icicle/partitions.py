# icicle/partitions.py
from typing import List, Optional, Union

from icicle.config.models import CustomScheme, FullDiskScheme
from icicle.utils.exceptions import NoPartitionSchemeError

ROOT_MOUNTPOINT = "/"


def resolve_boot_device(scheme: Optional[Union[FullDiskScheme, CustomScheme]]) -> Optional[str]:
    """
    Returns the device a legacy bootloader is installed to.

    Args:
        scheme: The partition scheme of the install request.

    Returns:
        The whole disk for a full-disk scheme, the device mounted at "/" for a
        custom scheme, or None when no custom partition is mounted at "/".

    Raises:
        NoPartitionSchemeError: If no scheme was supplied.
    """
    if scheme is None:
        raise NoPartitionSchemeError()

    if isinstance(scheme, FullDiskScheme):
        return scheme.disk

    for partition in scheme.partitions.values():
        if partition.mountpoint == ROOT_MOUNTPOINT:
            return partition.device
    return None


def describe_scheme(scheme: Optional[Union[FullDiskScheme, CustomScheme]]) -> List[str]:
    """Human readable lines describing what partitioning will do."""
    if scheme is None:
        return ["No partition scheme selected"]
    if isinstance(scheme, FullDiskScheme):
        return [f"Erase {scheme.disk} and use the entire disk"]

    lines = []
    for pid, p in scheme.partitions.items():
        action = f"format as {p.filesystem}" if p.filesystem else "keep filesystem"
        target = f"mount at {p.mountpoint}" if p.mountpoint else "not mounted"
        lines.append(f"{pid}: {p.device} ({action}, {target})")
    return lines
