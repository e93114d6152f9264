"""Plugin loader: reads plugin.json manifests and turns valid entries into ToolDefs.

Manifest layout::

    <plugins_dir>/<plugin>/plugin.json
    {
      "name": "weather_plus",
      "version": "1.0.0",
      "tools": [
        {"name": "forecast", "description": "...", "required": ["city"],
         "parameters": {"city": {"type": "string"}},
         "handler": "weather_plus.tools:forecast"}
      ]
    }

Anything invalid is skipped with a warning; loading never raises.
"""
import importlib
import inspect
import json
import logging
import os
import sys
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError

from .registry import ToolDef, ToolDescriptor

logger = logging.getLogger(__name__)

MANIFEST_NAME = "plugin.json"


class PluginToolDescriptor(ToolDescriptor):
    handler: str = Field(pattern=r"^[A-Za-z_][\w.]*:[A-Za-z_]\w*$")


class PluginManifest(BaseModel):
    name: str = Field(min_length=1)
    version: str = "0.0.0"
    tools: List[dict] = []


def _import_handler(spec: str, plugin_dir: str):
    module_name, _, attr = spec.partition(":")
    # Plugin packages live next to their manifest.
    parent = os.path.dirname(plugin_dir)
    if parent not in sys.path:
        sys.path.insert(0, parent)
    module = importlib.import_module(module_name)
    handler = getattr(module, attr)
    if not inspect.iscoroutinefunction(handler):
        raise TypeError(f"{spec} is not an async function")
    return handler


def load_plugin_dir(plugin_dir: str) -> List[ToolDef]:
    manifest_path = os.path.join(plugin_dir, MANIFEST_NAME)
    try:
        with open(manifest_path, encoding="utf-8") as f:
            manifest = PluginManifest(**json.load(f))
    except (OSError, ValueError, TypeError, ValidationError) as e:
        logger.warning(f"Skipping plugin {plugin_dir}: bad manifest ({e})")
        return []

    tools: List[ToolDef] = []
    for raw in manifest.tools:
        try:
            desc = PluginToolDescriptor(**raw)
        except (TypeError, ValidationError) as e:
            name = raw.get("name", "?") if isinstance(raw, dict) else "?"
            logger.warning(f"Skipping tool '{name}' in plugin {manifest.name}: {e}")
            continue
        try:
            handler = _import_handler(desc.handler, plugin_dir)
        except Exception as e:
            logger.warning(f"Skipping tool '{desc.name}' in plugin {manifest.name}: cannot load handler ({e})")
            continue
        tools.append(ToolDef(spec=desc.to_spec(), handler=handler, source=f"plugin:{manifest.name}"))
    logger.info(f"Plugin {manifest.name} v{manifest.version}: {len(tools)} tool(s)")
    return tools


def load_plugins(plugins_dir: Optional[str]) -> List[ToolDef]:
    """Load every plugin directory under plugins_dir, in name order."""
    if not plugins_dir or not os.path.isdir(plugins_dir):
        return []
    tools: List[ToolDef] = []
    for entry in sorted(os.listdir(plugins_dir)):
        path = os.path.join(plugins_dir, entry)
        if os.path.isfile(os.path.join(path, MANIFEST_NAME)):
            tools.extend(load_plugin_dir(path))
    return tools
