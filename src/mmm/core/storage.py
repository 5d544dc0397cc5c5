"""
Local State Directory

Small per-user directory under the state prefix given on the command line.
It holds the device ID reused across logins and the log file. Sync state
is not cached here; every run starts from a full initial sync.
"""

from typing import Optional
from pathlib import Path
import json

import aiofiles


class StorageError(Exception):
    """Base exception for state directory operations"""
    pass


class StateStore:
    """
    Per-user state directory

    Layout:
        <prefix>/<user>/device.json
        <prefix>/<user>/mmm.log
    """

    DEVICE_FILE = "device.json"
    LOG_FILE = "mmm.log"

    def __init__(self, prefix: str, user_id: str):
        self.base_path = Path(prefix).expanduser()
        self.user_id = user_id
        self.user_path = self.base_path / user_dir_name(user_id)

    def ensure_structure(self) -> Path:
        """Create the per-user directory if it does not exist"""
        try:
            self.user_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create state directory {self.user_path}: {e}") from e
        return self.user_path

    @property
    def log_path(self) -> Path:
        return self.user_path / self.LOG_FILE

    @property
    def device_path(self) -> Path:
        return self.user_path / self.DEVICE_FILE

    async def write_json(self, file_path: Path, data: dict) -> None:
        """Write JSON data to file"""
        content = json.dumps(data, indent=2, ensure_ascii=False)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(file_path, 'w', encoding='utf-8') as f:
                await f.write(content)
        except OSError as e:
            raise StorageError(f"Error writing JSON file {file_path}: {e}") from e

    async def read_json(self, file_path: Path) -> Optional[dict]:
        """Read JSON data from file, None if it does not exist"""
        if not file_path.exists():
            return None

        try:
            async with aiofiles.open(file_path, 'r', encoding='utf-8') as f:
                content = await f.read()
            data = json.loads(content)
        except (OSError, ValueError) as e:
            raise StorageError(f"Error reading JSON file {file_path}: {e}") from e

        return data if isinstance(data, dict) else None

    async def load_device_id(self) -> Optional[str]:
        """Device ID from the last successful login"""
        data = await self.read_json(self.device_path)
        if not data or data.get('user_id') != self.user_id:
            return None
        device_id = data.get('device_id')
        return device_id if isinstance(device_id, str) and device_id else None

    async def save_device_id(self, device_id: str) -> None:
        await self.write_json(self.device_path, {
            'user_id': self.user_id,
            'device_id': device_id,
        })


def user_dir_name(user_id: str) -> str:
    """Directory name for a user ID: @alice:example.org -> alice_example.org"""
    name = user_id.lstrip('@').replace(':', '_')
    # Keep the name a single safe path component
    return ''.join(c for c in name if c.isalnum() or c in '._-') or 'default'
