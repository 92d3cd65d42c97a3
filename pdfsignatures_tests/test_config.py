import logging

import pytest

from pdfsignatures.config import (
    DEFAULT_ROOT_LOGGER_LEVEL,
    LogConfig,
    OperationDefaults,
    StdLogOutput,
    parse_cli_config,
    parse_logging_config,
)
from pdfsignatures.pdf_utils.config_utils import ConfigurationError
from pdfsignatures.sign.fields import CertificationLevel
from pdfsignatures.sign.placeholder import DEFAULT_ESTIMATED_SIZE


def test_empty_config():
    cli_config = parse_cli_config('')
    assert cli_config.log_config == {
        None: LogConfig(DEFAULT_ROOT_LOGGER_LEVEL, StdLogOutput.STDERR)
    }
    assert cli_config.defaults == OperationDefaults()
    assert cli_config.defaults.estimated_size == DEFAULT_ESTIMATED_SIZE
    assert cli_config.defaults.digest_algorithm == 'SHA-512'


def test_logging_config():
    config_string = """
    logging:
        root-level: DEBUG
        root-output: stdout
        by-module:
            pdfsignatures.sign:
                level: 20
                output: pdfsignatures.log
            pdfsignatures.pdf_utils: WARNING
    """
    log_config = parse_cli_config(config_string).log_config
    assert log_config[None] == LogConfig('DEBUG', StdLogOutput.STDOUT)
    assert log_config['pdfsignatures.sign'] == LogConfig(
        logging.INFO, 'pdfsignatures.log'
    )
    # module output defaults to the root output
    assert log_config['pdfsignatures.pdf_utils'] == LogConfig(
        'WARNING', StdLogOutput.STDOUT
    )


@pytest.mark.parametrize('spec,expected', [
    ('stderr', StdLogOutput.STDERR), ('STDOUT', StdLogOutput.STDOUT),
    ('/tmp/out.log', '/tmp/out.log'),
])
def test_log_output_spec(spec, expected):
    assert LogConfig.parse_output_spec(spec) == expected


@pytest.mark.parametrize('log_config_spec,msg', [
    ({'root-level': [1]}, 'Log levels must be int or str'),
    ({'root-output': 1}, 'must be specified as a string'),
    ({'by-module': 'x'}, 'should be a dict'),
    ({'by-module': {'x': {'output': 'stderr'}}}, 'does not define a log lev'),
    ({'by-module': {'x': [1]}}, 'should be a level or a dictionary'),
    ({'root-levle': 'DEBUG'}, 'Unexpected key'),
    ('DEBUG', 'should be a dictionary'),
])
def test_bad_logging_config(log_config_spec, msg):
    with pytest.raises(ConfigurationError, match=msg):
        parse_logging_config(log_config_spec)


def test_defaults_config():
    config_string = """
    defaults:
        estimated-size: 8192
        cert-level: 2
        digest-algorithm: sha256
    """
    defaults = parse_cli_config(config_string).defaults
    assert defaults == OperationDefaults(
        estimated_size=8192,
        cert_level=CertificationLevel.CERTIFIED_FORM_FILLING,
        digest_algorithm='SHA-256',
    )


@pytest.mark.parametrize('config_string,msg', [
    ('defaults:\n  estimated-size: 0', 'positive integer'),
    ('defaults:\n  estimated-size: yes', 'positive integer'),
    ('defaults:\n  cert-level: 5', 'ertification level'),
    ('defaults:\n  digest-algorithm: md5', 'md5'),
    ('defaults:\n  colour: blue', 'Unexpected key'),
    ('signers: {}', 'Unexpected key'),
    ('logging: [', 'Could not parse configuration'),
])
def test_bad_config(config_string, msg):
    with pytest.raises(ConfigurationError, match=msg):
        parse_cli_config(config_string)
