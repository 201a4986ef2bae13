#
# Copyright 2025 The TadoLocal and AmpScm contributors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

"""Bridge configuration.

Settings come from an optional JSON file shaped like a homebridge platform
block (``host``, ``user``, ``pass``, ``nuke``, ``ignore``, ``toPoll``,
``thresholdWattage``) and are overridden by command line flags.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Invalid or incomplete configuration."""


def _int_list(name: str, value: Any) -> List[int]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"'{name}' must be a list of device ids")
    try:
        return [int(v) for v in value]
    except (TypeError, ValueError):
        raise ConfigError(f"'{name}' must only contain numeric device ids")


@dataclass
class PumpOutletConfig:
    host: str
    user: str = ""
    password: str = ""
    nuke: bool = False
    ignore: List[int] = field(default_factory=list)
    to_poll: List[int] = field(default_factory=list)
    threshold_wattage: float = 0.0

    def __post_init__(self):
        if not self.host:
            raise ConfigError("'host' is required (e.g. http://192.168.1.10:8083/)")
        if not self.host.endswith('/'):
            self.host += '/'
        try:
            self.threshold_wattage = float(self.threshold_wattage)
        except (TypeError, ValueError):
            raise ConfigError("'thresholdWattage' must be a number")
        if self.threshold_wattage <= 0:
            raise ConfigError("'thresholdWattage' is required and must be greater than 0")

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'PumpOutletConfig':
        """Build from a homebridge-style platform block."""
        return cls(
            host=raw.get('host') or '',
            user=raw.get('user') or '',
            password=raw.get('pass') or '',
            # Presence of the key is enough to nuke unless it is explicitly false
            nuke='nuke' in raw and raw['nuke'] is not False,
            ignore=_int_list('ignore', raw.get('ignore')),
            to_poll=_int_list('toPoll', raw.get('toPoll')),
            threshold_wattage=raw.get('thresholdWattage', 0),
        )

    @classmethod
    def from_args(cls, args) -> 'PumpOutletConfig':
        """Merge an optional config file with command line overrides."""
        raw: Dict[str, Any] = {}
        if getattr(args, 'config', None):
            raw = load_config_file(args.config)

        overrides = {
            'host': args.host,
            'user': args.user,
            'pass': args.password,
            'ignore': args.ignore,
            'toPoll': args.to_poll,
            'thresholdWattage': args.threshold_wattage,
        }
        for key, value in overrides.items():
            if value is not None:
                raw[key] = value
        if args.nuke:
            raw['nuke'] = True

        return cls.from_dict(raw)


def load_config_file(path: str) -> Dict[str, Any]:
    """Load a JSON config file.

    Accepts either a bare platform block or a full homebridge config.json,
    in which case the first ``zway-pump-outlet`` platform is used.
    """
    config_file = Path(path).expanduser()
    if not config_file.exists():
        raise ConfigError(f"Config file not found: {config_file}")

    try:
        data = json.loads(config_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config file {config_file} is not valid JSON: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_file} must contain a JSON object")

    platforms = data.get('platforms')
    if isinstance(platforms, list):
        block: Optional[Dict[str, Any]] = next(
            (p for p in platforms if isinstance(p, dict) and p.get('platform') == 'zway-pump-outlet'),
            None,
        )
        if block is None:
            raise ConfigError(f"No zway-pump-outlet platform found in {config_file}")
        data = block

    logger.info(f"Configuration loaded from {config_file}")
    return dict(data)
