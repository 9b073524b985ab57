#!/usr/bin/env python
"""
Example chat client using chatwire.

A simple command-line client that connects to the chat servers, prints
incoming activity and sends messages.
"""

import os
import sys
import argparse
import logging
from concurrent.futures import Future
from typing import Dict, Any, Optional

# Add parent directory to path to allow importing chatwire
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from chatwire.client import MessengerClient
from chatwire.messages import Message
from chatwire.exceptions import ChatwireException

logger = logging.getLogger(__name__)

class ChatClient:
    """
    Simple command-line chat client using chatwire.
    """

    def __init__(self, config_path: Optional[str] = None, log_level: str = "INFO"):
        self.client = MessengerClient(config_path, log_level=log_level)
        self.running = False

        self.client.on("message", self._on_message)
        self.client.on("typing", self._on_typing)
        self.client.on("connect", lambda: self._notify("Connection established"))
        self.client.on("disconnect", lambda: self._notify("Connection lost"))
        self.client.on("reconnecting", lambda info: self._notify(
            f"Reconnecting in {info['delay']:.1f}s (attempt {info['attempt']})"))
        self.client.on("reconnect_failed", lambda error: self._notify(f"Giving up: {error}"))

    def start(self, access_token: Optional[str] = None) -> None:
        """Start the chat client."""
        try:
            if access_token:
                self.client.login(access_token)

            print("Connecting...")
            self.client.connect()

            self.running = True
            self._command_loop()

        except KeyboardInterrupt:
            print("\nExiting by user request.")
        except ChatwireException as e:
            logger.error(f"Chatwire error: {str(e)}")
            print(f"Error: {str(e)}")
        finally:
            self.client.destroy()

    def _command_loop(self) -> None:
        print("Type 'help' for available commands.")

        while self.running:
            command = input("\n> ").strip()

            if not command:
                continue

            try:
                if command == "help":
                    self._show_help()
                elif command in ("exit", "quit"):
                    self.running = False
                elif command == "status":
                    self._show_status()
                elif command.startswith("send "):
                    parts = command[5:].strip().split(" ", 1)
                    if len(parts) == 2:
                        self._send_message(*parts)
                    else:
                        print("Usage: send <thread_id> <message>")
                elif command.startswith("read "):
                    parts = command[5:].strip().split(" ", 1)
                    if len(parts) == 2:
                        self.client.mark_as_read(*parts)
                    else:
                        print("Usage: read <thread_id> <message_id>")
                else:
                    print(f"Unknown command: {command}")
            except ChatwireException as e:
                print(f"Error: {str(e)}")

    def _show_help(self) -> None:
        print("\nAvailable commands:")
        print("  help                          - Show this help information")
        print("  status                        - Show connection status")
        print("  send <thread_id> <message>    - Send a message")
        print("  read <thread_id> <message_id> - Mark a message as read")
        print("  exit/quit                     - Exit the chat client")

    def _show_status(self) -> None:
        status = self.client.get_status()
        print(f"\n  State: {status['state']}")
        print(f"  Pending acknowledgments: {status['pending_messages']}")
        print(f"  Reconnect attempts: {status['reconnect_attempts']}")

    def _send_message(self, thread_id: str, text: str) -> None:
        future = self.client.send_message(thread_id, text)
        future.add_done_callback(self._on_delivery)

    def _on_delivery(self, future: Future) -> None:
        error = future.exception()
        if error is not None:
            self._notify(f"Delivery failed: {error}")
        else:
            self._notify(f"Delivered ({future.result()['message_id']})")

    def _on_message(self, message: Message) -> None:
        self._notify(f"[{message.thread_id}] {message.sender}: {message.text}")

    def _on_typing(self, data: Dict[str, Any]) -> None:
        if data["typing"]:
            self._notify(f"[{data['thread_id']}] {data['user_id']} is typing...")

    def _notify(self, text: str) -> None:
        print(f"\n{text}")
        if self.running:
            print("> ", end="", flush=True)


def main():
    """Main function."""
    parser = argparse.ArgumentParser(description='Chatwire Chat Client')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--token', '-t', default=os.environ.get('CHATWIRE_TOKEN'),
                        help='Access token (defaults to $CHATWIRE_TOKEN or saved credentials)')
    parser.add_argument('--debug', '-d', action='store_true', help='Enable debug logging')

    args = parser.parse_args()

    client = ChatClient(args.config, log_level="DEBUG" if args.debug else "INFO")
    client.start(args.token)

if __name__ == '__main__':
    main()
