import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

import yaml

from pdfsignatures.pdf_utils import config_utils
from pdfsignatures.pdf_utils.config_utils import (
    ConfigurationError,
    check_config_keys,
)
from pdfsignatures.pdf_utils.misc import get_and_apply
from pdfsignatures.sign.fields import CertificationLevel
from pdfsignatures.sign.general import (
    DEFAULT_MD,
    ParameterError,
    normalise_md_algorithm,
)
from pdfsignatures.sign.placeholder import DEFAULT_ESTIMATED_SIZE

__all__ = [
    'StdLogOutput', 'LogConfig', 'OperationDefaults', 'CLIConfig',
    'parse_logging_config', 'parse_cli_config',
]


class StdLogOutput(enum.Enum):
    STDERR = enum.auto()
    STDOUT = enum.auto()


@dataclass(frozen=True)
class LogConfig:
    level: Union[int, str]
    """
    Logging level, should be one of the levels defined in the logging module.
    """

    output: Union[StdLogOutput, str]
    """
    Name of the output file, or a standard one.
    """

    @staticmethod
    def parse_output_spec(spec) -> Union[StdLogOutput, str]:
        if not isinstance(spec, str):
            raise ConfigurationError(
                "Log output must be specified as a string."
            )
        spec_l = spec.lower()
        if spec_l == 'stderr':
            return StdLogOutput.STDERR
        elif spec_l == 'stdout':
            return StdLogOutput.STDOUT
        else:
            return spec


@dataclass(frozen=True)
class OperationDefaults(config_utils.ConfigurableMixin):
    """
    Default values for command line options, configurable through the
    ``defaults`` section of the configuration file.
    """

    estimated_size: int = DEFAULT_ESTIMATED_SIZE
    """Number of bytes to reserve for signatures."""

    cert_level: CertificationLevel = CertificationLevel.NOT_CERTIFIED
    """Certification level for new placeholders."""

    digest_algorithm: str = DEFAULT_MD
    """Digest algorithm for ``digest``."""

    @classmethod
    def process_entries(cls, config_dict):
        super().process_entries(config_dict)
        try:
            config_dict['estimated_size'] = config_utils.process_positive_int(
                config_dict['estimated_size'], 'estimated-size'
            )
        except KeyError:
            pass
        try:
            config_dict['cert_level'] = CertificationLevel.from_value(
                config_dict['cert_level']
            )
        except KeyError:
            pass
        except ParameterError as e:
            raise ConfigurationError(e.msg) from e
        try:
            config_dict['digest_algorithm'] = normalise_md_algorithm(
                config_dict['digest_algorithm']
            )
        except KeyError:
            pass
        except ParameterError as e:
            raise ConfigurationError(e.msg) from e


@dataclass
class CLIConfig:
    log_config: Dict[Optional[str], LogConfig]
    defaults: OperationDefaults = field(default_factory=OperationDefaults)


DEFAULT_ROOT_LOGGER_LEVEL = logging.INFO


def _retrieve_log_level(settings_dict, key, default=None) -> Union[int, str]:
    try:
        level_spec = settings_dict[key]
    except KeyError:
        if default is not None:
            return default
        raise ConfigurationError(
            f"Logging config for '{key}' does not define a log level."
        )
    if not isinstance(level_spec, (int, str)):
        raise ConfigurationError(
            f"Log levels must be int or str, not {type(level_spec)}"
        )
    return level_spec


def parse_logging_config(log_config_spec) -> Dict[Optional[str], LogConfig]:
    if not isinstance(log_config_spec, dict):
        raise ConfigurationError('logging config should be a dictionary')
    check_config_keys(
        'logging', ('root-level', 'root-output', 'by-module'), log_config_spec
    )
    root_logger_level = _retrieve_log_level(
        log_config_spec, 'root-level', default=DEFAULT_ROOT_LOGGER_LEVEL
    )
    root_logger_output = get_and_apply(
        log_config_spec, 'root-output', LogConfig.parse_output_spec,
        default=StdLogOutput.STDERR
    )
    log_config = {None: LogConfig(root_logger_level, root_logger_output)}
    logging_by_module = log_config_spec.get('by-module', {})
    if not isinstance(logging_by_module, dict):
        raise ConfigurationError('logging.by-module should be a dict')
    for module, module_logging_settings in logging_by_module.items():
        if not isinstance(module, str):
            raise ConfigurationError(
                "Keys in logging.by-module should be strings"
            )
        # shorthand: 'module: LEVEL'
        if isinstance(module_logging_settings, (int, str)):
            module_logging_settings = {'level': module_logging_settings}
        elif not isinstance(module_logging_settings, dict):
            raise ConfigurationError(
                f"Logging settings for '{module}' should be a level or a "
                f"dictionary"
            )
        level_spec = _retrieve_log_level(module_logging_settings, 'level')
        output_spec = get_and_apply(
            module_logging_settings, 'output', LogConfig.parse_output_spec,
            default=root_logger_output
        )
        log_config[module] = LogConfig(level=level_spec, output=output_spec)
    return log_config


def parse_cli_config(yaml_str) -> CLIConfig:
    try:
        config_dict = yaml.safe_load(yaml_str) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Could not parse configuration: {e}") from e
    return CLIConfig(**process_config_dict(config_dict))


def process_config_dict(config_dict: dict) -> dict:
    check_config_keys('CLIConfig', ('logging', 'defaults'), config_dict)

    # logging config
    log_config_spec = config_dict.get('logging', {})
    log_config = parse_logging_config(log_config_spec)

    defaults_spec = config_dict.get('defaults', {}) or {}
    defaults = OperationDefaults.from_config(defaults_spec)
    return {'log_config': log_config, 'defaults': defaults}
