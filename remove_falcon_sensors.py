# Remove Falcon Sensors
#
# Example of how to bulk uninstall CrowdStrike Falcon sensors based on a CSV, TSV or XLSX
# file on disk containing a list of host ids (AIDs). To generate this list, consider exporting
# the host list from the Falcon console, identifying the hosts you want to remove the sensor from
# through analysis in Excel or similar, and saving the result with a header row.
#
# For each host id, this script uses Real Time Response to queue a sensor uninstall. By default the
# command is queued for offline hosts, so it is delivered the next time each host connects to the
# Falcon cloud. Host records are NOT deleted from the console. A failure for one host does not stop
# the run, and because queuing an uninstall is idempotent you can safely re-run the same input file
# if the script is interrupted.
#
# This script is published under the GNU General Public License v3.0 and is intended as a working
# example of how to interact with the Falcon API. It is not a commercial product and is provided
# 'as-is' with no support. No warranty, express or implied, is provided, and the use of this script
# is at your own risk.
#
# This script requires Python 3.x and several common libraries. To install these dependencies, run
#     pip install crowdstrike-falconpy requests pyyaml pandas openpyxl
#
# The API client must have the following scopes:
#     Hosts: Read
#     Sensor update policies: Write
#     Real time response: Read
#     Real time response (admin): Write
#
# Credentials can be provided on the command line (--client-id and --client-secret) or in an
# optional configuration file named 'falcon.yaml' in the folder you run this script from. Use
# any text editor to create this file based on the template below. Command line values win.
'''
client_id: yourclientid                     # Required unless --client-id is used
client_secret: yourclientsecret             # Required unless --client-secret is used
base_url: US1                               # Optional - US1, US2, EU1, USGOV1 or a full URL
member_cid: yourchildcid                    # Optional - Flight Control child tenant
remove_falcon_sensors:                      # Optional section
  column: HostID                            # Optional - overrides the default (HostID)
  queue_offline: true                       # Optional - overrides the default (true)
  audit_message: Decommissioned host        # Optional - recorded when revealing uninstall tokens
'''
# The input file needs a header row. Only the identifier column is used, additional columns
# are ignored. Example:
'''
HostID,Hostname
aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa,WORKSTATION01
bbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb,WORKSTATION02
'''
# Usage:
#     python remove_falcon_sensors.py hosts.csv
#     python remove_falcon_sensors.py hosts.xlsx --column AID --client-id x --client-secret y --yes


## Import required libraries ##
import argparse
import importlib
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import pandas
import requests
import urllib3
import yaml


DEFAULT_CONFIG_FILE = 'falcon.yaml'
DEFAULT_COLUMN = 'HostID'
DEFAULT_BASE_URL = 'US1'
DEFAULT_AUDIT_MESSAGE = 'Sensor uninstall queued by remove_falcon_sensors.py'

STATE_QUEUED = 'queued'
STATE_SUBMITTED = 'submitted'

# Runscript bodies per platform. Windows and Mac sensors need a maintenance token, Linux does not.
UNINSTALL_SCRIPTS = {
    'windows': (
        "$Key = Get-ChildItem 'HKLM:\\SOFTWARE\\Microsoft\\Windows\\CurrentVersion\\Uninstall',"
        "'HKLM:\\SOFTWARE\\WOW6432Node\\Microsoft\\Windows\\CurrentVersion\\Uninstall' | "
        "Get-ItemProperty | Where-Object {{ $_.DisplayName -eq 'CrowdStrike Windows Sensor' }}; "
        "Start-Process -FilePath cmd.exe -ArgumentList '/c',"
        "\"$($Key.QuietUninstallString) MAINTENANCE_TOKEN={token}\" -PassThru | Out-Null"
    ),
    'mac': (
        "echo '{token}' | /Applications/Falcon.app/Contents/Resources/falconctl "
        "uninstall --maintenance-token"
    ),
    'linux': (
        "nohup sh -c 'if command -v rpm >/dev/null && rpm -q falcon-sensor >/dev/null; "
        "then rpm -e falcon-sensor; elif command -v dpkg >/dev/null; "
        "then dpkg -P falcon-sensor; fi' >/dev/null 2>&1 &"
    ),
}


## DEFINE A SERIES OF CLASSES AND METHODS USED AT RUNTIME ##

# Returns the current UTC time as a string, used to prefix every line of console output
def now(format='%Y-%m-%d %H:%M:%S'):
    return datetime.now(timezone.utc).strftime(format)


# Prints a leveled line of console output, for example '2024-01-01 12:00:00 INFO: Read 5 records'
def log(level, *args):
    print(now(), f'{level}:', *args)


class FalconAPIError(Exception):
    """Raised when the Falcon API answers with an error or an unusable body."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self):
        if self.status_code is None:
            return self.message
        return f'{self.message} (HTTP {self.status_code})'


@dataclass
class UninstallResult:
    host_id: str
    success: bool
    state: Optional[str] = None
    error: Optional[str] = None


@dataclass
class RunSummary:
    processed: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    successes: list = field(default_factory=list)
    failures: list = field(default_factory=list)


# Returns the resources list from a FalconPy response dictionary, raising FalconAPIError on failure
def check_response(response, action):
    status_code = response.get('status_code')
    body = response.get('body') or {}
    errors = body.get('errors') or []
    if status_code is None or status_code >= 300 or errors:
        if errors:
            message = '; '.join(str(error.get('message', error) if isinstance(error, dict) else error)
                                for error in errors)
        else:
            message = 'no error detail returned'
        raise FalconAPIError(f'Unable to {action}: {message}', status_code)
    return body.get('resources') or []


class FalconSession:
    """Authenticated set of FalconPy service classes sharing one OAuth2 token.

    Constructed once per run by connect() and passed to every uninstall request.
    """

    def __init__(self, falconpy, auth, audit_message=DEFAULT_AUDIT_MESSAGE):
        self.auth = auth
        self.audit_message = audit_message
        self.hosts = falconpy.Hosts(auth_object=auth)
        self.sensor_update = falconpy.SensorUpdatePolicy(auth_object=auth)
        self.rtr = falconpy.RealTimeResponse(auth_object=auth)
        self.rtr_admin = falconpy.RealTimeResponseAdmin(auth_object=auth)

    def get_platform(self, host_id):
        resources = check_response(self.hosts.get_device_details(ids=host_id), 'retrieve host details')
        if not resources:
            raise FalconAPIError('Host not found')
        platform = (resources[0].get('platform_name') or '').lower()
        if platform not in UNINSTALL_SCRIPTS:
            raise FalconAPIError(f"Unsupported platform '{resources[0].get('platform_name')}'")
        return platform

    def reveal_uninstall_token(self, host_id):
        response = self.sensor_update.reveal_uninstall_token(device_id=host_id, audit_message=self.audit_message)
        resources = check_response(response, 'reveal uninstall token')
        if not resources or not resources[0].get('uninstall_token'):
            raise FalconAPIError('Unable to reveal uninstall token: no token returned')
        return resources[0]['uninstall_token']

    def queue_uninstall(self, host_id, queue_offline=True):
        """Request a sensor uninstall for one host and return the request state.

        The state is 'queued' when the cloud stored the command for delivery to an offline
        host and 'submitted' when it was handed to a connected host.
        """
        platform = self.get_platform(host_id)
        token = self.reveal_uninstall_token(host_id) if platform != 'linux' else ''
        script = UNINSTALL_SCRIPTS[platform].format(token=token)

        response = self.rtr.init_session(device_id=host_id, queue_offline=queue_offline)
        resources = check_response(response, 'start Real Time Response session')
        if not resources:
            raise FalconAPIError('Unable to start Real Time Response session: no session returned')
        session_id = resources[0].get('session_id')
        if not session_id:
            raise FalconAPIError('Unable to start Real Time Response session: no session id returned',
                                 response.get('status_code'))
        offline_queued = bool(resources[0].get('offline_queued'))

        response = self.rtr_admin.execute_admin_command(base_command='runscript',
                                                        command_string=f'runscript -Raw=```{script}```',
                                                        device_id=host_id,
                                                        session_id=session_id,
                                                        persist=queue_offline)
        resources = check_response(response, 'run uninstall command')
        if resources and resources[0].get('queued_command_offline'):
            offline_queued = True

        return STATE_QUEUED if offline_queued else STATE_SUBMITTED


# Verifies FalconPy is installed and returns the module, exiting if it is not
def load_falconpy():
    try:
        return importlib.import_module('falconpy')
    except ImportError as e:
        log('ERROR', 'The FalconPy library is not available:', e)
        print('Install it with this command and try again:\n\n    pip install crowdstrike-falconpy\n')
        sys.exit(1)


# Method that reads optional configuration from a YAML file on disk
def read_config(config_file_name=None):

    required = config_file_name is not None
    if config_file_name is None:
        config_file_name = DEFAULT_CONFIG_FILE

    if not os.path.isfile(config_file_name):
        if required:
            log('ERROR', 'The configuration file', f"'{config_file_name}'", 'does not exist')
            sys.exit(1)
        return {}

    log('INFO', 'Reading configuration from', config_file_name)
    try:
        with open(config_file_name, 'r') as file:
            config = yaml.safe_load(file)
    except (OSError, yaml.YAMLError) as e:
        log('ERROR', 'Unable to read configuration from', config_file_name, ':', e)
        sys.exit(1)

    if config is None:
        return {}
    if not isinstance(config, dict):
        log('ERROR', 'The configuration file', config_file_name, 'must contain a YAML mapping')
        sys.exit(1)
    return config


# Merges command line arguments over the configuration file and returns the settings used for the run
def resolve_settings(args, config):
    script_config = config.get('remove_falcon_sensors') or {}
    if not isinstance(script_config, dict):
        log('ERROR', "The 'remove_falcon_sensors' section of the configuration file must be a YAML mapping")
        sys.exit(1)

    queue_offline = script_config.get('queue_offline', True)
    if not isinstance(queue_offline, bool):
        log('ERROR', "The 'queue_offline' setting must be true or false, not", f"'{queue_offline}'")
        sys.exit(1)

    settings = {
        'client_id': args.client_id or config.get('client_id'),
        'client_secret': args.client_secret or config.get('client_secret'),
        'base_url': args.base_url or config.get('base_url') or DEFAULT_BASE_URL,
        'member_cid': args.member_cid or config.get('member_cid'),
        'column': args.column or script_config.get('column') or DEFAULT_COLUMN,
        'queue_offline': queue_offline,
        'audit_message': script_config.get('audit_message') or DEFAULT_AUDIT_MESSAGE,
    }
    if args.no_queue_offline:
        settings['queue_offline'] = False
    return settings


# Authenticates to the Falcon API and returns a FalconSession, exiting if the credentials are rejected
def connect(falconpy, client_id, client_secret, base_url=DEFAULT_BASE_URL, member_cid=None,
            ssl_verify=True, audit_message=DEFAULT_AUDIT_MESSAGE):

    if not client_id or not client_secret:
        log('ERROR', 'A Falcon API client id and client secret are required.',
            'Provide them with --client-id and --client-secret or in', DEFAULT_CONFIG_FILE)
        sys.exit(1)

    log('INFO', 'Authenticating to', base_url, 'with client id', f"'{client_id}'",
        'and secret ending in', f"'{client_secret[-4:]}'")
    auth = falconpy.OAuth2(client_id=client_id,
                           client_secret=client_secret,
                           base_url=base_url,
                           member_cid=member_cid,
                           ssl_verify=ssl_verify)
    try:
        response = auth.token()
        if response.get('status_code') != 201:
            check_response(response, 'authenticate')
            raise FalconAPIError('Unable to authenticate: no token returned', response.get('status_code'))
    except (FalconAPIError, requests.exceptions.RequestException) as e:
        log('ERROR', e)
        print('Check the client id, client secret, API scopes and base URL, then try again.')
        sys.exit(1)

    log('INFO', 'Successfully authenticated to the Falcon API')
    return FalconSession(falconpy, auth, audit_message=audit_message)


# Returns the field separator for a delimited file, based on its extension unless overridden
def choose_delimiter(file_name, delimiter=None):
    if delimiter:
        return '\t' if delimiter in ('\\t', 'tab') else delimiter
    if file_name.lower().endswith(('.tsv', '.tab')):
        return '\t'
    return ','


# Reads the input file on disk and returns it as a list of dictionaries, one per row
def read_host_records(file_name, delimiter=None):

    if not os.path.isfile(file_name):
        log('ERROR', 'The input file', f"'{file_name}'", 'does not exist or is not a file')
        sys.exit(1)

    log('INFO', 'Reading host records from', file_name)
    try:
        if file_name.lower().endswith(('.xlsx', '.xls')):
            df = pandas.read_excel(file_name, dtype=str, keep_default_na=False)
        else:
            df = pandas.read_csv(file_name,
                                 sep=choose_delimiter(file_name, delimiter),
                                 dtype=str,
                                 keep_default_na=False,
                                 skip_blank_lines=False,
                                 skipinitialspace=True)
    except (pandas.errors.ParserError, pandas.errors.EmptyDataError, UnicodeDecodeError,
            OSError, ValueError) as e:
        log('ERROR', 'Unable to parse', file_name, ':', e)
        print('Make sure the file is a delimited text or XLSX file with a header row and is not open in another program.')
        sys.exit(1)

    records = df.to_dict(orient='records')
    log('INFO', 'Read', len(records), 'records from', file_name)
    return records


# Returns the stripped host id for a record, or an empty string when the column is missing or blank
def get_host_id(record, column):
    value = record.get(column)
    if value is None:
        return ''
    if not isinstance(value, str):
        if pandas.isna(value):
            return ''
        value = str(value)
    return value.strip()


# Queues a sensor uninstall for one host, converting any failure into an unsuccessful result
def uninstall_sensor(session, host_id, queue_offline=True):
    try:
        state = session.queue_uninstall(host_id, queue_offline=queue_offline)
    except (FalconAPIError, requests.exceptions.RequestException) as e:
        return UninstallResult(host_id, False, error=str(e))
    return UninstallResult(host_id, True, state=state)


# Walks the host records in order, requesting one uninstall per non-blank host id
def process_records(session, records, column, queue_offline=True, dry_run=False):

    summary = RunSummary()
    total = len(records)
    if records and column not in records[0]:
        log('WARNING', 'Column', f"'{column}'", 'was not found in the input file. Available columns:',
            ', '.join(str(key) for key in records[0].keys()))

    counter = 1
    for record in records:
        host_id = get_host_id(record, column)
        if not host_id:
            log('WARNING', f'{counter} / {total}', ':', 'Skipping row with a blank', f"'{column}'", 'value')
            summary.skipped += 1
            counter += 1
            continue

        summary.processed += 1
        if dry_run:
            log('INFO', f'{counter} / {total}', ':', host_id, 'would be uninstalled (dry run)')
            counter += 1
            continue

        result = uninstall_sensor(session, host_id, queue_offline=queue_offline)
        if result.success:
            log('SUCCESS', f'{counter} / {total}', ':', host_id, 'uninstall request', result.state)
            summary.succeeded += 1
            summary.successes.append(host_id)
        else:
            log('ERROR', f'{counter} / {total}', ':', host_id, 'failed:', result.error)
            summary.failed += 1
            summary.failures.append(host_id)
        counter += 1

    return summary


# Prints the end of run summary
def print_summary(summary, dry_run=False):
    if dry_run:
        print('\nDry run complete,', summary.processed, 'hosts would be uninstalled and',
              summary.skipped, 'rows were skipped')
        return
    print('\nSuccessfully requested uninstall for', summary.succeeded, 'hosts')
    for host_id in summary.successes:
        print(host_id)
    print('\nSkipped', summary.skipped, 'rows with a blank host id')
    print('\nEncountered', summary.failed, 'failures')
    for host_id in summary.failures:
        print(host_id)


# Prints the insecure mode banner and suppresses SSL warnings for lab environments
def disable_ssl_verification():
    urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
    sys.stderr.write(
        "\n\033[91m"
        "!!! INSECURE MODE ENABLED !!!\n"
        "SSL certificate verification is DISABLED.\n"
        "An attacker on the network could intercept or modify traffic\n"
        "and steal your API credentials (man-in-the-middle attack).\n"
        "Use ONLY in trusted lab/dev environments. Re-run without --insecure for safe operation.\n"
        "\033[0m\n"
    )


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog='remove_falcon_sensors.py',
        description='Queue CrowdStrike Falcon sensor uninstalls for a list of host ids read from a file'
    )
    parser.add_argument('input_file', help='CSV, TSV or XLSX file with a header row')
    parser.add_argument('--column', default=None, help=f'Column containing the host ids (default {DEFAULT_COLUMN})')
    parser.add_argument('--client-id', default=None, help='Falcon API client id')
    parser.add_argument('--client-secret', default=None, help='Falcon API client secret')
    parser.add_argument('--base-url', default=None, help=f'Falcon cloud region or URL (default {DEFAULT_BASE_URL})')
    parser.add_argument('--member-cid', default=None, help='Child CID to act on from a Flight Control parent')
    parser.add_argument('--config', default=None, help=f'YAML configuration file (default {DEFAULT_CONFIG_FILE} if present)')
    parser.add_argument('--delimiter', default=None, help="Field separator for text files, use 'tab' for tabs")
    parser.add_argument('--no-queue-offline', action='store_true', help='Do not queue the uninstall for offline hosts')
    parser.add_argument('--dry-run', action='store_true', help='List the host ids that would be uninstalled and exit')
    parser.add_argument('--yes', action='store_true', help='Do not prompt for confirmation')
    parser.add_argument('--strict', action='store_true', help='Exit with code 2 if any uninstall request failed')
    parser.add_argument('--insecure', action='store_true', help='Disable SSL certificate verification (NOT for production)')
    return parser.parse_args(argv)


## MAIN METHOD THAT GETS EXECUTED WHEN THIS SCRIPT IS RUN ##

def main(argv=None):

    args = parse_args(argv)
    if args.insecure:
        disable_ssl_verification()

    falconpy = load_falconpy()

    config = read_config(args.config)
    settings = resolve_settings(args, config)
    session = connect(falconpy,
                      settings['client_id'],
                      settings['client_secret'],
                      base_url=settings['base_url'],
                      member_cid=settings['member_cid'],
                      ssl_verify=not args.insecure,
                      audit_message=settings['audit_message'])

    records = read_host_records(args.input_file, args.delimiter)

    #sanity check
    if not args.dry_run and not args.yes:
        try:
            proceed = input(f'\nAre you sure you want to uninstall the sensor from the hosts in {args.input_file}? Enter YES to proceed: ')
        except EOFError:
            proceed = ''
        if proceed.lower() != 'yes':
            log('INFO', 'Canceled due to your response', f"'{proceed}'")
            return 0

    log('INFO', 'Processing', len(records), 'records using column', f"'{settings['column']}'",
        '(queue offline)' if settings['queue_offline'] else '(online hosts only)')
    summary = process_records(session, records, settings['column'],
                              queue_offline=settings['queue_offline'],
                              dry_run=args.dry_run)
    print_summary(summary, dry_run=args.dry_run)

    if args.strict and summary.failed:
        return 2
    return 0


#invoke main method when PY file is run
if __name__ == '__main__':
    sys.exit(main())
