"""
Protocol module for the chatwire library.

Handles serialization and deserialization of channel frames. Every frame is
a JSON envelope whose ``type`` field selects how it is handled.
"""

import json
import logging
from typing import Dict, Any, Optional, Union

from chatwire.exceptions import ProtocolError
from chatwire.constants import (
    FRAME_AUTHENTICATION,
    FRAME_MESSAGE,
    FRAME_TYPING,
    FRAME_READ_RECEIPT,
    FRAME_HEARTBEAT,
    PLATFORM,
    CLIENT_VERSION
)
from chatwire.utils import generate_timestamp

logger = logging.getLogger(__name__)

class Protocol:
    """
    Handles channel frame serialization and deserialization.
    """

    @staticmethod
    def encode_frame(frame: Dict[str, Any]) -> str:
        """
        Encode a frame for sending over the channel.

        Args:
            frame: Frame dictionary, must carry a ``type``.

        Returns:
            Encoded frame text.

        Raises:
            ProtocolError: If the frame has no type or is not serializable.
        """
        if not isinstance(frame, dict) or not frame.get("type"):
            raise ProtocolError("Frame must be a dictionary with a type")

        try:
            encoded = json.dumps(frame, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"Failed to encode {frame['type']} frame: {str(e)}")

        logger.debug(f"Encoded {frame['type']} frame ({len(encoded)} bytes)")
        return encoded

    @staticmethod
    def decode_frame(data: Union[bytes, bytearray, str]) -> Dict[str, Any]:
        """
        Decode a frame received from the channel.

        Args:
            data: Raw frame, text or binary.

        Returns:
            Decoded frame.

        Raises:
            ProtocolError: If the frame cannot be decoded.
        """
        try:
            if isinstance(data, (bytes, bytearray)):
                data = bytes(data).decode("utf-8")
            frame = json.loads(data)
        except (UnicodeDecodeError, TypeError, ValueError) as e:
            raise ProtocolError(f"Failed to decode frame: {str(e)}")

        if not isinstance(frame, dict):
            raise ProtocolError(f"Frame must be an object, got {type(frame).__name__}")

        return frame

    @staticmethod
    def authentication_frame(token: str, device_id: str, client_id: str) -> Dict[str, Any]:
        """
        Build the channel authentication frame.

        Args:
            token: Channel token.
            device_id: Device identifier.
            client_id: Client identifier.

        Returns:
            Authentication frame.
        """
        return {
            "type": FRAME_AUTHENTICATION,
            "token": token,
            "device_id": device_id,
            "client_id": client_id,
            "platform": PLATFORM,
            "version": CLIENT_VERSION
        }

    @staticmethod
    def message_frame(message_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Build an outbound message frame.

        Args:
            message_id: Identifier the acknowledgment will refer to.
            data: Message payload.

        Returns:
            Message frame.
        """
        return {
            "type": FRAME_MESSAGE,
            "id": message_id,
            "data": data,
            "timestamp": generate_timestamp()
        }

    @staticmethod
    def typing_frame(thread_id: str, typing: bool = True) -> Dict[str, Any]:
        return {
            "type": FRAME_TYPING,
            "thread_id": thread_id,
            "typing": typing,
            "timestamp": generate_timestamp()
        }

    @staticmethod
    def read_receipt_frame(thread_id: str, message_id: str) -> Dict[str, Any]:
        return {
            "type": FRAME_READ_RECEIPT,
            "thread_id": thread_id,
            "message_id": message_id,
            "timestamp": generate_timestamp()
        }

    @staticmethod
    def heartbeat_frame() -> Dict[str, Any]:
        return {
            "type": FRAME_HEARTBEAT,
            "timestamp": generate_timestamp()
        }

    @staticmethod
    def frame_type(frame: Dict[str, Any]) -> Optional[str]:
        frame_type = frame.get("type")
        return frame_type if isinstance(frame_type, str) else None
