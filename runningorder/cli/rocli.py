import json
import logging
import os
import pathlib
import sys
from getpass import getpass
from typing import List

import keyring
from decouple import config

from runningorder import helpers

import argparse

from runningorder.cloud.controller import SyncZoneManager
from runningorder.cloud.model.backend import CloudContainer
from runningorder.cloud.model.tasks import SyncEvent


class RunningOrderCli:
    """
    Defines the functionality of the RunningOrder CLI.
    """

    SETTINGS = {
        'container': 'iCloud.com.worldline.RunningOrder',
        'environment': 'development',
        'current_user': '__defaultOwner__',
        'retry_interval': 5,
        'log_level': 'info'
    }

    #: Keyring service holding the CloudKit tokens
    KEYRING_SERVICE = "RunningOrder"
    #: Keyring entry of the CloudKit API token
    API_TOKEN_KEY = "CLOUDKIT-API-TOKEN"
    #: Keyring entry of the CloudKit web auth token
    WEB_AUTH_TOKEN_KEY = "CLOUDKIT-WEB-AUTH-TOKEN"

    def __init__(self, args):
        self.args = args
        self.logger = self.setup_logging()
        self.apply_settings()
        self.events: List[SyncEvent] = []
        self.run_command()

    def run_command(self) -> None:
        """
        Runs the command given on the command line. If the command fails, an error message is logged and the CLI exits
        with a status code.
        """
        if self.args.command == 'scope':
            RunningOrderCli.print_scope(self.args.payload)
            return

        container = self.connect()
        if self.args.command == 'setup':
            manager = self.create_manager(container)
            manager.wait_for_tasks(timeout=60)
            failed = [e for e in self.events if not e.success]
            if len(failed) > 0:
                logging.critical("Cloud setup failed: {}".format('; '.join(str(e.data) for e in failed)))
                sys.exit(4)
            logging.info("Cloud setup completed successfully.")
        elif self.args.command == 'add-collaborator':
            manager = self.create_manager(container, request_permission=False)
            success, data = manager.save_owner_name(self.args.identity)
            if not success:
                logging.critical("Failed to add collaborator {}: {}".format(self.args.identity, data))
                sys.exit(5)
            logging.info("Collaborator {} added.".format(self.args.identity))
        elif self.args.command == 'remove-subscriptions':
            manager = self.create_manager(container, request_permission=False, setup=False)
            success, data = manager.remove_subscriptions()
            if not success:
                logging.critical("Failed to remove subscriptions: {}".format(json.dumps(data)))
                sys.exit(6)
            logging.info("Subscriptions removed.")

    def create_manager(self, container: CloudContainer, request_permission: bool = True,
                       setup: bool = True) -> SyncZoneManager:
        """
        Creates the zone manager, collecting every event it publishes.

        :param container: the cloud container.
        :param request_permission: if False, the discoverability permission is not requested.
        :param setup: if False, zones and subscriptions are not set up on construction.

        :return: the zone manager.
        """
        manager = SyncZoneManager(
            container,
            current_user=RunningOrderCli.SETTINGS['current_user'],
            retry_interval=int(RunningOrderCli.SETTINGS['retry_interval']),
            request_permission=request_permission,
            setup=setup,
            on_event=self.events.append
        )
        return manager

    @staticmethod
    def print_scope(payload_file: pathlib.Path) -> None:
        """
        Prints the database scope of a notification payload saved as JSON, or ``unrecognized``.

        :param payload_file: the file holding the payload.
        """
        success, data = helpers.read_json(payload_file)
        if not success:
            logging.critical(data)
            sys.exit(7)
        scope = SyncZoneManager.database_scope_for_notification(data)
        print(scope.value if scope is not None else 'unrecognized')

    def connect(self) -> CloudContainer:
        """
        Creates the cloud container using the CloudKit tokens. If the --api-token option is used, this method will ask
        for an API token regardless of whether one is saved. If no token is found, the CLI exits with an error.

        :return: the cloud container.
        """
        if 'api_token' in self.args:
            # User specifically wants to be asked for a token
            new_token = getpass('CloudKit API Token> ')
            keyring.set_password(RunningOrderCli.KEYRING_SERVICE, RunningOrderCli.API_TOKEN_KEY, new_token)

        api_token = config('RUNNINGORDER_API_TOKEN', default=None) or keyring.get_password(
            RunningOrderCli.KEYRING_SERVICE, RunningOrderCli.API_TOKEN_KEY)
        if api_token is None:
            logging.critical('No CloudKit API token in keyring. Use --api-token to be prompted for a token.')
            sys.exit(3)
        web_auth_token = config('RUNNINGORDER_WEB_AUTH_TOKEN', default=None) or keyring.get_password(
            RunningOrderCli.KEYRING_SERVICE, RunningOrderCli.WEB_AUTH_TOKEN_KEY)

        return CloudContainer(
            RunningOrderCli.SETTINGS['container'],
            environment=RunningOrderCli.SETTINGS['environment'],
            api_token=api_token,
            web_auth_token=web_auth_token
        )

    def apply_settings(self) -> None:
        """
        Load settings from the configuration file. This is normally in ~/Library/Application Support/RunningOrder/conf.json,
        but may be overridden with the --config option. Environment variables override the configuration file.
        """

        # Load settings from file
        if 'config' in self.args:
            # Load settings from custom configuration file
            if os.path.exists(self.args.config):
                conf_file = self.args.config
                self.logger.info('Using custom config file: {}'.format(conf_file))
            else:
                self.logger.critical('Configuration file {} not found.'.format(self.args.config))
                sys.exit(2)
        else:
            # Load settings from default configuration file
            conf_file = helpers.settings_folder() / 'conf.json'
            self.logger.info('Using default config file: {}'.format(conf_file))

        RunningOrderCli.merge_settings(conf_file)

        # Override settings from environment
        RunningOrderCli.SETTINGS['container'] = config('RUNNINGORDER_CONTAINER',
                                                       default=RunningOrderCli.SETTINGS['container'])
        RunningOrderCli.SETTINGS['environment'] = config('RUNNINGORDER_ENVIRONMENT',
                                                         default=RunningOrderCli.SETTINGS['environment'])
        RunningOrderCli.SETTINGS['log_level'] = config('RUNNINGORDER_LOG_LEVEL',
                                                       default=RunningOrderCli.SETTINGS['log_level'])

        # --log-level wins over the setting
        if 'log_level' not in self.args:
            log_level = RunningOrderCli.SETTINGS['log_level']
            if log_level not in helpers.LOG_LEVELS:
                self.logger.critical('Invalid log_level {} in {}.'.format(log_level, conf_file))
                sys.exit(2)
            self.logger.setLevel(helpers.LOG_LEVELS[log_level])

        logging.debug("Settings in use: {}".format(json.dumps(RunningOrderCli.SETTINGS, indent=2)))

    @staticmethod
    def merge_settings(conf_file) -> None:
        """
        Override any of the default settings of the RunningOrder CLI with settings found in a configuration file.
        """

        if os.path.exists(conf_file):
            with open(conf_file) as fp:
                try:
                    loaded_settings = json.loads(fp.read())
                except json.decoder.JSONDecodeError:
                    logging.critical("Your configuration file at {} is invalid. Please check syntax.".format(conf_file))
                    sys.exit(2)
            if not isinstance(loaded_settings, dict):
                logging.critical("Your configuration file at {} must hold a JSON object.".format(conf_file))
                sys.exit(2)
            for key in RunningOrderCli.SETTINGS.keys():
                if key in loaded_settings:
                    RunningOrderCli.SETTINGS[key] = loaded_settings[key]

    def setup_logging(self) -> logging.Logger:
        """
        Sets up the logging system.

        :return: the logging helper for the CLI.
        """

        if 'log_dir' in self.args:
            if os.access(self.args.log_dir, os.W_OK | os.X_OK):
                log_folder = self.args.log_dir
            else:
                print("Specified log directory {} is not accessible.".format(self.args.log_dir))
                sys.exit(1)
        else:
            log_folder = None

        # The configuration file is not read yet, so the default level is used until apply_settings
        log_level = self.args.log_level if 'log_level' in self.args else RunningOrderCli.SETTINGS['log_level']
        return helpers.setup_logging(log_level, log_folder)


def main():
    """
    Defines arguments accepted by the CLI.
    """

    parser = argparse.ArgumentParser(
        prog="RunningOrder CLI",
        description="Set up and maintain the CloudKit zones and subscriptions used by RunningOrder.",
    )

    subparsers = parser.add_subparsers(dest='command', required=True)
    subparsers.add_parser(
        "setup",
        help="create the owned zone and the change subscriptions, and request discoverability.")
    add_collaborator = subparsers.add_parser(
        "add-collaborator",
        help="observe the zone of a collaborator.")
    add_collaborator.add_argument(
        "identity",
        type=str,
        help="the identity of the collaborator.")
    subparsers.add_parser(
        "remove-subscriptions",
        help="delete the private and shared database subscriptions.")
    scope = subparsers.add_parser(
        "scope",
        help="print the database scope of a notification payload.")
    scope.add_argument(
        "payload",
        type=pathlib.Path,
        help="path to a JSON file holding the notification payload.")

    # Cli-specific options
    parser.add_argument(
        "--api-token",
        default=argparse.SUPPRESS,
        action='store_true',
        help="prompt for the CloudKit API token.")
    parser.add_argument(
        "--config",
        type=pathlib.Path,
        default=argparse.SUPPRESS,
        help="use to provide a path to a custom configuration file.")
    parser.add_argument(
        "--log-dir",
        type=pathlib.Path,
        default=argparse.SUPPRESS,
        help="specify a custom directory to use for logging.")
    parser.add_argument(
        "--log-level",
        type=str,
        choices=['debug', 'info', 'critical', 'warning'],
        default=argparse.SUPPRESS,
        help="specify the logging level. Overrides the log_level setting.")

    RunningOrderCli(parser.parse_args())


if __name__ == "__main__":
    main()
