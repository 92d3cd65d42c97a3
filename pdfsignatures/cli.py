import base64
import logging
import sys
from contextlib import contextmanager
from enum import Enum, auto

import click

from pdfsignatures import __version__, api
from pdfsignatures.config import (
    CLIConfig,
    LogConfig,
    OperationDefaults,
    StdLogOutput,
    parse_cli_config,
    parse_logging_config,
)
from pdfsignatures.pdf_utils import misc
from pdfsignatures.pdf_utils.config_utils import ConfigurationError
from pdfsignatures.sign.general import (
    DIGEST_ALGORITHMS,
    SigningError,
    normalise_md_algorithm,
)

__all__ = ['cli_root']

logger = logging.getLogger(__name__)


class NoStackTraceFormatter(logging.Formatter):
    def formatException(self, ei) -> str:
        return ""


LOG_FORMAT_STRING = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def logging_setup(log_configs, verbose: bool):
    log_config: LogConfig
    for module, log_config in log_configs.items():
        cur_logger = logging.getLogger(module)
        cur_logger.setLevel(log_config.level)
        if isinstance(log_config.output, StdLogOutput):
            if log_config.output == StdLogOutput.STDOUT:
                handler = logging.StreamHandler(sys.stdout)
            else:
                handler = logging.StreamHandler()
            # when logging to the console, don't output stack traces
            # unless in verbose mode
            if verbose:
                formatter = logging.Formatter(LOG_FORMAT_STRING)
            else:
                formatter = NoStackTraceFormatter(LOG_FORMAT_STRING)
        else:
            handler = logging.FileHandler(log_config.output)
            formatter = logging.Formatter(LOG_FORMAT_STRING)
        handler.setFormatter(formatter)
        cur_logger.addHandler(handler)


def _error_type(e: Exception) -> str:
    return getattr(e, 'error_type', type(e).__name__)


@contextmanager
def pdfsignatures_exception_manager():
    msg = exception = None
    try:
        yield
    except click.ClickException:
        raise
    except misc.PdfStrictReadError as e:
        exception = e
        msg = (
            "Failed to read PDF file in strict mode; rerun with "
            "--no-strict-syntax to try again.\n"
            f"Error message: {e.msg}"
        )
    except misc.PasswordError as e:
        exception = e
        msg = f"Failed to decrypt PDF file: {e.msg}"
    except misc.PdfReadError as e:
        exception = e
        msg = f"Failed to read PDF file: {e.msg}"
    except misc.PdfWriteError as e:
        exception = e
        msg = f"Failed to write PDF file: {e.msg}"
    except SigningError as e:
        exception = e
        msg = f"Error raised while processing signature: {e.msg}"
    except ConfigurationError as e:
        exception = e
        msg = f"Configuration error: {e}"
    except OSError as e:
        exception = e
        msg = f"I/O error: {e}"

    if exception is not None:
        logger.error(msg, exc_info=exception)
        raise click.ClickException(f"[{_error_type(exception)}] {msg}")


DEFAULT_CONFIG_FILE = 'pdfsignatures.yml'


class Ctx(Enum):
    CLI_CONFIG = auto()
    LENIENT = auto()


def _get_defaults(ctx) -> OperationDefaults:
    cli_config: CLIConfig = ctx.obj.get(Ctx.CLI_CONFIG, None)
    if cli_config is None:
        return OperationDefaults()
    return cli_config.defaults


@click.group()
@click.version_option(prog_name='pdfsignatures', version=__version__)
@click.option('--config',
              help=(
                  'YAML file to load configuration from'
                  f'[default: {DEFAULT_CONFIG_FILE}]'
              ), required=False, type=click.File('r'))
@click.option('--verbose', help='Run in verbose mode', required=False,
              default=False, type=bool, is_flag=True)
@click.option('--no-strict-syntax',
              help='Attempt to ignore syntactical problems in the input file',
              required=False, type=bool, is_flag=True, default=False)
@click.pass_context
def cli_root(ctx, config, verbose, no_strict_syntax):
    config_text = None
    if config is None:
        try:
            with open(DEFAULT_CONFIG_FILE, 'r') as f:
                config_text = f.read()
            config = DEFAULT_CONFIG_FILE
        except FileNotFoundError:
            pass
        except IOError as e:
            raise click.ClickException(
                f"Failed to read {DEFAULT_CONFIG_FILE}: {str(e)}"
            )
    else:
        try:
            config_text = config.read()
        except IOError as e:
            raise click.ClickException(
                f"Failed to read configuration: {str(e)}",
            )

    ctx.ensure_object(dict)
    ctx.obj[Ctx.LENIENT] = no_strict_syntax
    if config_text is not None:
        try:
            ctx.obj[Ctx.CLI_CONFIG] = cfg = parse_cli_config(config_text)
        except ConfigurationError as e:
            raise click.ClickException(
                f"[{e.error_type}] Failed to parse configuration: {e}"
            )
        log_config = cfg.log_config
    else:
        # grab the default
        log_config = parse_logging_config({})

    if verbose:
        # override the root logger's logging level, but preserve the output
        root_logger_config = log_config[None]
        log_config[None] = LogConfig(
            level=logging.DEBUG, output=root_logger_config.output
        )

    logging_setup(log_config, verbose)

    if verbose:
        logging.debug("Running with --verbose")
    if config_text is not None:
        logging.debug(f'Finished reading configuration from {config}.')
    else:
        logging.debug('There was no configuration to parse.')


readable_file = click.Path(exists=True, readable=True, dir_okay=False)
writable_file = click.Path(dir_okay=False, writable=True)


@cli_root.command(help='add an empty signature placeholder', name='placeholder')
@click.argument('infile', type=readable_file)
@click.argument('outfile', type=writable_file)
@click.option('--estimated-size', type=click.IntRange(min=1), required=False,
              help='number of bytes to reserve for the signature')
@click.option('--cert-level', type=click.IntRange(0, 3), required=False,
              help='certification level (0 for an approval signature)')
@click.option('--password', required=False, type=str,
              help='password of an encrypted input file')
@click.option('--reason', required=False, type=str, help='signing reason')
@click.option('--location', required=False, type=str,
              help='signing location')
@click.option('--contact', required=False, type=str,
              help='contact information of the signer')
@click.option('--date', required=False, type=str,
              help='signing time in ISO 8601 format [default: now]')
@click.option('--field', required=False, type=str,
              help='name of the signature field to create')
@click.pass_context
def add_placeholder(ctx, infile, outfile, estimated_size, cert_level,
                    password, reason, location, contact, date, field):
    defaults = _get_defaults(ctx)
    if estimated_size is None:
        estimated_size = defaults.estimated_size
    if cert_level is None:
        cert_level = defaults.cert_level
    with pdfsignatures_exception_manager():
        result = api.add_signature_placeholder(
            infile, outfile, estimated_size=estimated_size,
            cert_level=cert_level, password=password, reason=reason,
            location=location, contact=contact, date=date, field_name=field,
            strict=not ctx.obj[Ctx.LENIENT],
        )
    click.echo(result.output_path)


def _validate_algorithm(ctx, param, value):
    if value is None:
        return None
    try:
        return normalise_md_algorithm(value)
    except SigningError as e:
        raise click.BadParameter(e.msg, ctx=ctx, param=param)


@cli_root.command(help='compute the digest to sign', name='digest')
@click.argument('infile', type=readable_file)
@click.option('--password', required=False, type=str,
              help='password of an encrypted input file')
@click.option('--algorithm', required=False, type=str,
              callback=_validate_algorithm,
              help=f"digest algorithm (one of {', '.join(DIGEST_ALGORITHMS)})")
@click.pass_context
def digest(ctx, infile, password, algorithm):
    if algorithm is None:
        algorithm = _get_defaults(ctx).digest_algorithm
    with pdfsignatures_exception_manager():
        result = api.compute_digest(
            infile, password=password, algorithm=algorithm,
            strict=not ctx.obj[Ctx.LENIENT],
        )
    click.echo(result.digest)


@cli_root.command(help='embed a detached signature', name='embed')
@click.argument('infile', type=readable_file)
@click.argument('outfile', type=writable_file)
@click.option('--signature', required=False, type=str,
              help='base64-encoded DER signature')
@click.option('--signature-file', required=False, type=readable_file,
              help='file containing a DER-encoded signature')
@click.option('--password', required=False, type=str,
              help='password of an encrypted input file')
@click.pass_context
def embed(ctx, infile, outfile, signature, signature_file, password):
    if (signature is None) == (signature_file is None):
        raise click.ClickException(
            "Exactly one of --signature and --signature-file is required."
        )
    if signature_file is not None:
        with open(signature_file, 'rb') as sigf:
            signature = base64.b64encode(sigf.read()).decode('ascii')
    with pdfsignatures_exception_manager():
        result = api.embed_signature(
            infile, outfile, signature, password=password,
            strict=not ctx.obj[Ctx.LENIENT],
        )
    click.echo(result.output_path)


def _read_payload(spec: str) -> str:
    # '@path' refers to a DER file, anything else is base64
    if spec.startswith('@'):
        with open(spec[1:], 'rb') as inf:
            return base64.b64encode(inf.read()).decode('ascii')
    return spec


@cli_root.command(help='add revocation information for LTV', name='ltv')
@click.argument('infile', type=readable_file)
@click.argument('outfile', type=writable_file)
@click.option('--crl', multiple=True, type=str,
              help='base64-encoded CRL, or @file for a DER file')
@click.option('--ocsp', multiple=True, type=str,
              help='base64-encoded OCSP response, or @file for a DER file')
@click.option('--password', required=False, type=str,
              help='password of an encrypted input file')
@click.pass_context
def ltv(ctx, infile, outfile, crl, ocsp, password):
    with pdfsignatures_exception_manager():
        result = api.add_ltv(
            infile, outfile, crl=[_read_payload(x) for x in crl],
            ocsp=[_read_payload(x) for x in ocsp], password=password,
            strict=not ctx.obj[Ctx.LENIENT],
        )
    click.echo(result.output_path)


@cli_root.command(help='list signature fields', name='list')
@click.argument('infile', type=readable_file)
@click.option('--password', required=False, type=str,
              help='password of an encrypted input file')
@click.pass_context
def list_sigfields(ctx, infile, password):
    with pdfsignatures_exception_manager():
        fields = api.list_signature_fields(
            infile, password=password, strict=not ctx.obj[Ctx.LENIENT]
        )
    for fld in fields:
        if fld.bytes_reserved is not None:
            click.echo(f"{fld.name}:{fld.status}:{fld.bytes_reserved}")
        else:
            click.echo(f"{fld.name}:{fld.status}")
