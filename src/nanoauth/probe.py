"""Reachability check for a running gate.

Sends one request carrying the token and reports whether the gate let it
through.
"""

import requests
import urllib3

from nanoauth.auth import DEFAULT_HEADER


def probe(
    url: str,
    token: str,
    header: str = DEFAULT_HEADER,
    verify: bool = False,
    timeout: float = 10,
) -> tuple[bool, str]:
    """Check that a gate accepts token at url.

    Args:
        url: Gate URL (e.g., https://127.0.0.1:8443/)
        token: Token to present in header
        header: Token header name
        verify: Verify the server certificate (off for self-signed)
        timeout: Request timeout in seconds

    Returns:
        (success, message) tuple
    """
    if not verify:
        # Suppress SSL warnings for self-signed certs
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    try:
        resp = requests.get(
            url,
            # http.client encodes str header values as latin-1
            headers={header: token.encode("utf-8")} if token else {},
            verify=verify,
            timeout=timeout,
            allow_redirects=False,
        )
    except requests.exceptions.SSLError as e:
        return False, f"TLS error connecting to {url}: {e}"
    except requests.exceptions.ConnectionError as e:
        return False, f"Cannot connect to {url}: {e}"
    except requests.exceptions.Timeout:
        return False, f"Timeout connecting to {url}"
    except (requests.exceptions.InvalidHeader, UnicodeError) as e:
        return False, f"Invalid token header {header!r}: {e}"

    if resp.status_code == 401:
        return False, f"Token rejected by {url} (401)"

    if resp.status_code < 400:
        return True, f"Gate accepted token ({resp.status_code})"

    # Past the guard; the application answered with an error
    return True, f"Gate accepted token; application returned {resp.status_code}"
