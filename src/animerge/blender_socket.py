"""
Blender Socket - transport to a running Blender instance

Sends scripts to the BlenderMCP addon over its JSON socket protocol. The
addon executes the script and returns everything it printed; scripts in this
package print exactly one JSON object as their last line.

Usage:
    from animerge.blender_socket import run_script

    result = run_script('''
import json
print(json.dumps({"objects": len(bpy.data.objects)}))
''')
"""

import json
import logging
import os
import socket
from typing import Any, Dict

logger = logging.getLogger(__name__)

# Default connection settings
DEFAULT_HOST = 'localhost'
DEFAULT_PORT = 9876
DEFAULT_TIMEOUT = 120


def connection_settings() -> Dict[str, Any]:
    """Host/port/timeout from BLENDER_HOST, BLENDER_PORT, BLENDER_TIMEOUT"""
    return {
        'host': os.getenv('BLENDER_HOST', DEFAULT_HOST),
        'port': int(os.getenv('BLENDER_PORT', DEFAULT_PORT)),
        'timeout': float(os.getenv('BLENDER_TIMEOUT', DEFAULT_TIMEOUT)),
    }


def _send_message(message: dict, host: str = DEFAULT_HOST,
                  port: int = DEFAULT_PORT, timeout: float = DEFAULT_TIMEOUT) -> dict:
    """
    Send one JSON message to the addon and return its JSON reply.

    Raises:
        ConnectionRefusedError: If the addon is not running
        TimeoutError: If the reply takes longer than ``timeout``
        ConnectionError: If the socket closes without a reply
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.settimeout(timeout)

    try:
        sock.connect((host, port))
        sock.sendall(json.dumps(message).encode('utf-8'))

        # Accumulate chunks until they parse as one JSON document
        response = b''
        while True:
            try:
                chunk = sock.recv(8192)
            except socket.timeout:
                raise TimeoutError(f"Blender response timeout after {timeout}s")
            if not chunk:
                break
            response += chunk
            try:
                return json.loads(response.decode('utf-8'))
            except json.JSONDecodeError:
                continue
    finally:
        sock.close()

    if response:
        return json.loads(response.decode('utf-8'))
    raise ConnectionError("No response received from Blender")


def send_code(code: str, host: str = DEFAULT_HOST,
              port: int = DEFAULT_PORT, timeout: float = DEFAULT_TIMEOUT) -> str:
    """
    Execute Python code in Blender.

    Returns:
        Everything the code printed

    Raises:
        RuntimeError: If the addon reports an execution error
    """
    message = {
        'type': 'execute_code',
        'params': {'code': code}
    }
    logger.debug(f"Sending {len(code)} byte script to Blender at {host}:{port}")
    response = _send_message(message, host, port, timeout)

    if response.get('status') == 'error':
        raise RuntimeError(response.get('message', 'Unknown Blender error'))

    result = response.get('result', {})
    if isinstance(result, dict):
        return result.get('result', '')
    return str(result)


def run_script(code: str, host: str = DEFAULT_HOST,
               port: int = DEFAULT_PORT, timeout: float = DEFAULT_TIMEOUT) -> Dict[str, Any]:
    """
    Execute a script that prints a JSON object and return that object.

    Output printed before the final JSON line (Blender importer chatter) is
    ignored.

    Raises:
        RuntimeError: If the output has no JSON line
    """
    output = send_code(code, host, port, timeout)
    for line in reversed(output.strip().splitlines()):
        line = line.strip()
        if line.startswith('{'):
            try:
                return json.loads(line)
            except json.JSONDecodeError:
                break
    raise RuntimeError(f"Failed to parse Blender result: {output[-500:]}")


def is_blender_connected(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> bool:
    """True if the addon answers a trivial script"""
    try:
        run_script('import json\nprint(json.dumps({"ok": True}))', host, port, timeout=5)
        return True
    except (ConnectionRefusedError, ConnectionError, TimeoutError, RuntimeError, OSError):
        return False
