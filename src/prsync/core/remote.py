"""
Remote endpoint handling for prsync.
Parses rsync pass-through arguments into a transfer configuration.
"""

import logging
import re
import shutil
from typing import Optional, Sequence

from prsync.core.bandwidth import allocate_bandwidth, mbps_to_kbs
from prsync.core.config import (
    ConfigurationError,
    Direction,
    RemoteEndpoint,
    TransferConfig,
)

logger = logging.getLogger(__name__)

REMOTE_PATTERN = re.compile(
    r"^(?:(?P<user>[^@:/\s]+)@)?(?P<host>[^@:/\s]+):(?P<path>(?!:).*)$"
)


def looks_remote(arg: str) -> bool:
    """Check if an argument is meant as a `[user@]host:path` spec"""
    if arg.startswith("-") or ":" not in arg:
        return False
    # Local paths may contain ':' after a '/'
    return "/" not in arg.split(":", 1)[0]


def parse_remote(arg: str) -> RemoteEndpoint:
    """
    Parse a `[user@]host:path` argument

    Raises:
        ConfigurationError: If the argument cannot be parsed
    """
    match = REMOTE_PATTERN.match(arg)
    if not match:
        raise ConfigurationError(f"Cannot parse remote path specification: {arg}")
    return RemoteEndpoint(
        host=match.group("host"),
        path=match.group("path"),
        user=match.group("user"),
    )


def host_for_worker(host: str, start_index: Optional[int], worker_id: int) -> str:
    """
    Map a worker to its remote host

    Without a start index every worker talks to the same host. With one,
    worker N uses `start_index + N`, substituted for '{}' in the host name
    or appended to it (`dtn` -> `dtn3`).
    """
    if start_index is None:
        return host
    index = start_index + worker_id
    if "{}" in host:
        return host.replace("{}", str(index))
    return f"{host}{index}"


def uses_custom_shell(options: Sequence[str]) -> bool:
    """Check if the options pick a remote shell other than plain ssh"""
    for i, opt in enumerate(options):
        if opt.startswith("--rsh") or opt == "-e":
            return True
        # Short option group ending in 'e', e.g. -ave "ssh -p 2222"
        if re.match(r"^-[a-zA-Z]*e$", opt) and i + 1 < len(options):
            return True
    return False


def check_dependencies(rsync_path: str, options: Sequence[str] = ()):
    """
    Make sure the external tools are available

    Raises:
        ConfigurationError: If rsync or ssh is missing
    """
    if shutil.which(rsync_path) is None:
        raise ConfigurationError(f"rsync not found: {rsync_path}")
    if not uses_custom_shell(options) and shutil.which("ssh") is None:
        raise ConfigurationError("ssh not found")


def resolve_transfer(
    args: Sequence[str],
    workers: int,
    batch_size: int,
    host_start: Optional[int] = None,
    total_bw: Optional[int] = None,
    rsync_path: str = "rsync",
) -> TransferConfig:
    """
    Build the run configuration from the rsync pass-through arguments

    The last two arguments are the rsync source and destination; exactly
    one argument overall must be a remote `[user@]host:path` spec, and it
    must be one of those two.

    Args:
        args: rsync arguments, options first, then source and destination
        workers: Number of parallel workers
        batch_size: Files claimed per batch in dynamic mode
        host_start: First remote host index, or None for a single host
        total_bw: Total bandwidth budget in Mbit/s, or None for no limit
        rsync_path: rsync binary

    Returns:
        TransferConfig shared by all workers

    Raises:
        ConfigurationError: If the arguments do not describe one transfer
    """
    if workers < 1:
        raise ConfigurationError(f"Worker count must be at least 1, got {workers}")
    if batch_size < 1:
        raise ConfigurationError(f"Batch size must be at least 1, got {batch_size}")
    if host_start is not None and host_start < 0:
        raise ConfigurationError(f"Host start index must not be negative, got {host_start}")
    if total_bw is not None and total_bw < 0:
        raise ConfigurationError(f"Total bandwidth must not be negative, got {total_bw}")

    args = list(args)
    if len(args) < 2 or args[-1].startswith("-") or args[-2].startswith("-"):
        raise ConfigurationError("Both a source and a destination are required")

    remote_indexes = [i for i, arg in enumerate(args) if looks_remote(arg)]
    if len(remote_indexes) != 1:
        raise ConfigurationError(
            "Exactly one remote [user@]host:/path argument is required, "
            f"found {len(remote_indexes)}"
        )

    index = remote_indexes[0]
    if index == len(args) - 1:
        direction = Direction.UPLOAD
        local_path = args[-2]
    elif index == len(args) - 2:
        direction = Direction.DOWNLOAD
        local_path = args[-1]
    else:
        raise ConfigurationError(
            f"Remote path must be the source or the destination: {args[index]}"
        )

    endpoint = parse_remote(args[index])
    bandwidth = allocate_bandwidth(
        mbps_to_kbs(total_bw) if total_bw else None, workers
    )

    config = TransferConfig(
        options=tuple(args[:-2]),
        direction=direction,
        endpoint=endpoint,
        local_path=local_path,
        workers=workers,
        batch_size=batch_size,
        host_start=host_start,
        bandwidth_limit_kbs=bandwidth,
        rsync_path=rsync_path,
    )
    logger.debug("Resolved transfer: %s", config)
    return config


def endpoint_for_worker(config: TransferConfig, worker_id: int) -> RemoteEndpoint:
    """Remote endpoint a given worker talks to"""
    host = host_for_worker(config.endpoint.host, config.host_start, worker_id)
    return config.endpoint.with_host(host)
