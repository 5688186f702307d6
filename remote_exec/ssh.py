from __future__ import annotations

import socket
import time

from .models import Server


def check_server_availability(server: Server, timeout: float = 3.0) -> tuple[bool, str, float]:
    """
    Probe the server's SSH port over TCP.
    Returns (is_available, message, response_time_ms).
    """
    start_time = time.perf_counter()

    def elapsed() -> float:
        return (time.perf_counter() - start_time) * 1000

    try:
        with socket.create_connection((server.address, server.port), timeout=timeout):
            return True, "reachable", elapsed()
    except socket.gaierror:
        return False, "DNS error", elapsed()
    except TimeoutError:
        return False, "timeout", elapsed()
    except ConnectionRefusedError:
        return False, "port closed", elapsed()
    except OSError as e:
        return False, f"error: {e}", elapsed()
