# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Client configuration.

A configuration is a JSON object. String values may reference variables with
string.Template syntax; the variables available are:

  config_file   The absolute pathname of the configuration file, if loaded from a file
  config_dir    The directory containing the configuration file, if loaded from a file
  env_<NAME>    The value of environment variable NAME

For example:

  {
    "bind_address": "",
    "discovery_timeout": 3.0,
    "code_map_file": "${config_dir}/living_room.map"
  }
"""

from __future__ import annotations

import os
import json
from copy import deepcopy
from string import Template

from .internal_types import *
from .constants import (
    BROADCAST_ADDRESS,
    DISCOVERY_PORT,
    DEFAULT_DISCOVERY_TIMEOUT,
    DEFAULT_COMMAND_TIMEOUT,
  )

_T = TypeVar('_T')

class ConfigContext(Dict[str, str]):
  """Variables available to templates in configuration string values."""

  def __init__(self, globals: Optional[Mapping[str, str]]=None, os_environ: Optional[Mapping[str, str]]=None):
    super().__init__()
    if not globals is None:
      self.update(globals)
    if os_environ is None:
      os_environ = dict(os.environ)
    for k, v in os_environ.items():
      self[f"env_{k}"] = v

  def clone(self) -> ConfigContext:
    return deepcopy(self)

  def push_config_file(self, config_file: Optional[str]) -> ConfigContext:
    ctx = self.clone()
    ctx.set_config_file(config_file)
    return ctx

  def set_config_file(self, config_file: Optional[str]=None) -> None:
    if config_file is None:
      for propname in ['config_file', 'config_dir']:
        if propname in self:
          del self[propname]
    else:
      config_file = os.path.abspath(os.path.expanduser(config_file))
      self['config_file'] = config_file
      self['config_dir'] = os.path.dirname(config_file)

  @property
  def config_file(self) -> Optional[str]:
    return self.get('config_file', None)

  @property
  def config_dir(self) -> Optional[str]:
    return self.get('config_dir', None)

  def render_template_str(self, template_str: str) -> str:
    t: Template = Template(template_str)
    result: str = t.substitute(self)
    return result

  def render_template_json_data(self, template_json_data: Jsonable) -> Jsonable:
    """Renders every string (but not dict keys) in a JSON-able value."""
    if isinstance(template_json_data, str):
      return self.render_template_str(template_json_data)
    if isinstance(template_json_data, list):
      return [self.render_template_json_data(x) for x in template_json_data]
    if isinstance(template_json_data, dict):
      return { k: self.render_template_json_data(v) for k, v in template_json_data.items() }
    return template_json_data


class ClientConfig:
  """Settings for the shared socket, discovery and command exchanges."""

  _template_json_data: Optional[JsonableDict] = None
  _json_data: Optional[JsonableDict] = None
  _context: Optional[ConfigContext] = None

  def __init__(self, json_data: Optional[JsonableDict]=None, context: Optional[ConfigContext]=None):
    self.load_json_data(ConfigContext() if context is None else context, {} if json_data is None else json_data)

  @classmethod
  def load_file(cls, config_file: str, context: Optional[ConfigContext]=None) -> ClientConfig:
    ctx = (ConfigContext() if context is None else context).push_config_file(config_file)
    with open(config_file) as f:
      config_text = f.read()
    cfg = cls.__new__(cls)
    cfg.loads(ctx, config_text)
    return cfg

  @classmethod
  def from_str(cls, config_text: str, context: Optional[ConfigContext]=None) -> ClientConfig:
    cfg = cls.__new__(cls)
    cfg.loads(ConfigContext() if context is None else context, config_text)
    return cfg

  def get_context(self) -> ConfigContext:
    result = self._context
    assert not result is None
    return result

  @property
  def config_file(self) -> Optional[str]:
    """The fully qualified pathname of the configuration file from which this config
       originated, or None if not from a file"""
    return None if self._context is None else self._context.config_file

  @property
  def config_dir(self) -> Optional[str]:
    return None if self._context is None else self._context.config_dir

  def render(self) -> None:
    rendered = self.get_context().render_template_json_data(self._template_json_data)
    assert isinstance(rendered, dict)
    self._json_data = rendered

  def loads(self, ctx: ConfigContext, config_text: str) -> None:
    data = json.loads(config_text)
    if not isinstance(data, dict):
      raise TypeError(f"Config: Expected JSON object, got {type(data)}")
    self._template_json_data = data
    self._context = ctx.clone()
    self.render()

  def load_json_data(self, ctx: ConfigContext, json_data: JsonableDict) -> None:
    self.loads(ctx, json.dumps(json_data))

  _no_default = object()

  @overload
  def get_cfg_property(self, key: str, default: _T) -> Union[Jsonable, _T]: pass

  @overload
  def get_cfg_property(self, key: str) -> Jsonable: pass

  def get_cfg_property(self, key: str, default: Any=_no_default):
    if not isinstance(self._json_data, dict):
      raise TypeError(f"Config: Expected config data {key} to be dict, got {type(self._json_data)}")
    result = self._json_data.get(key, default)
    if result is self._no_default:
      raise KeyError(f"Config: Property {key} does not exist and has no default")
    if not result is None and not isinstance(result, JsonableTypes):
      raise TypeError(f"Config: Expected property {key} to be JSON-able, got {type(result)}")
    return result

  @overload
  def get_cfg_property_str(self, key: str, default: _T) -> Union[str, _T]: pass

  @overload
  def get_cfg_property_str(self, key: str) -> str: pass

  def get_cfg_property_str(self, key: str, default: Any=_no_default):
    result = self.get_cfg_property(key, default)
    if not isinstance(result, str):
      raise TypeError(f"Config: Expected property {key} to be str, got {type(result)}")
    return result

  @overload
  def get_cfg_property_int(self, key: str, default: _T) -> Union[int, _T]: pass

  @overload
  def get_cfg_property_int(self, key: str) -> int: pass

  def get_cfg_property_int(self, key: str, default: Any=_no_default):
    result = self.get_cfg_property(key, default)
    if isinstance(result, str):
      try:
        result = int(result, 0)
      except ValueError:
        pass
    if not isinstance(result, int) or isinstance(result, bool):
      raise TypeError(f"Config: Expected property {key} to be int, got {type(result)}")
    return result

  @overload
  def get_cfg_property_float(self, key: str, default: _T) -> Union[float, _T]: pass

  @overload
  def get_cfg_property_float(self, key: str) -> float: pass

  def get_cfg_property_float(self, key: str, default: Any=_no_default):
    result = self.get_cfg_property(key, default)
    if isinstance(result, str):
      try:
        result = float(result)
      except ValueError:
        pass
    if not isinstance(result, (int, float)) or isinstance(result, bool):
      raise TypeError(f"Config: Expected property {key} to be float, got {type(result)}")
    return float(result)

  @property
  def bind_address(self) -> str:
    return self.get_cfg_property_str('bind_address', "")

  @property
  def bind_port(self) -> Optional[int]:
    if self.get_cfg_property('bind_port', None) is None:
      return None
    return self.get_cfg_property_int('bind_port')

  @property
  def local_address(self) -> Optional[str]:
    if self.get_cfg_property('local_address', None) is None:
      return None
    return self.get_cfg_property_str('local_address')

  @property
  def broadcast_address(self) -> str:
    return self.get_cfg_property_str('broadcast_address', BROADCAST_ADDRESS)

  @property
  def discovery_port(self) -> int:
    return self.get_cfg_property_int('discovery_port', DISCOVERY_PORT)

  @property
  def discovery_timeout(self) -> float:
    return self.get_cfg_property_float('discovery_timeout', DEFAULT_DISCOVERY_TIMEOUT)

  @property
  def command_timeout(self) -> float:
    return self.get_cfg_property_float('command_timeout', DEFAULT_COMMAND_TIMEOUT)

  @property
  def code_map_file(self) -> Optional[str]:
    """The code map file, resolved relative to the configuration file's directory."""
    if self.get_cfg_property('code_map_file', None) is None:
      return None
    result = os.path.expanduser(self.get_cfg_property_str('code_map_file'))
    config_dir = self.config_dir
    if not os.path.isabs(result) and config_dir is not None:
      result = os.path.join(config_dir, result)
    return result
