import asyncio
import itertools
import json
import logging
import os
import subprocess
import sys
from typing import Any, Dict, List, Optional

from watchstreak.domain import TransportState
from watchstreak.exceptions import TransportError
from watchstreak.interfaces import IMediaTransport, StateCallback, Unsubscribe
from watchstreak.listeners import ListenerRegistry

logger = logging.getLogger(__name__)

OBSERVED_PROPERTIES = ("time-pos", "duration", "pause", "paused-for-cache", "speed", "volume", "mute")

_socket_counter = itertools.count(1)


class MpvTransport(IMediaTransport):
    """
    Drives an mpv process over its JSON IPC socket.

    mpv starts paused; once the file reports a duration we seek to the
    requested start and unpause. Property changes are observed rather than
    polled, and commands are written without waiting for replies, so nothing
    here blocks the event loop.
    """

    def __init__(self, player_executable_path: str = "mpv", audio_only: bool = False,
                 connect_timeout: float = 5.0):
        self.player_executable_path = player_executable_path
        self.audio_only = audio_only
        self.connect_timeout = connect_timeout
        self.request_id_counter = 0

        self._listeners: ListenerRegistry[TransportState] = ListenerRegistry()
        self._process: Optional[subprocess.Popen] = None
        self._socket_path: Optional[str] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._reset_media_state()
        self._rate = 1.0
        self._volume = 1.0
        self._muted = False

    def _reset_media_state(self) -> None:
        self._source = ""
        self._start_at = 0.0
        self._position = 0.0
        self._duration = 0.0
        self._paused = True
        self._buffering = False
        self._want_playing = False
        self._initial_seek_done = False
        self._state: Optional[TransportState] = None

    # --- Process & IPC ---

    def build_command(self, source: str, socket_path: str) -> List[str]:
        command = [
            self.player_executable_path,
            "--no-terminal",
            f"--input-ipc-server={socket_path}",
            "--idle=no",
            "--pause",  # Start paused, unpause after the initial seek
        ]
        if self.audio_only:
            command.extend(["--no-video", "--force-window=no"])
        command.append(source)
        return command

    def load(self, source: str, start_at: float = 0.0) -> None:
        if sys.platform.startswith('win'):
            raise TransportError("mpv IPC sockets are only supported on POSIX systems", source)
        self.stop()
        self._reset_media_state()
        self._source = source
        self._start_at = max(0.0, float(start_at or 0.0))

        self._socket_path = f"/tmp/watchstreak-mpv-{os.getpid()}-{next(_socket_counter)}"
        if os.path.exists(self._socket_path):
            os.remove(self._socket_path)

        command = self.build_command(source, self._socket_path)
        logger.info("Launching mpv: %s", " ".join(command))
        try:
            self._process = subprocess.Popen(command)
        except OSError as e:
            raise TransportError(f"Could not launch {self.player_executable_path}: {e}", source) from e

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            self.stop()
            raise TransportError("mpv transport needs a running event loop", source) from e
        self._emit(TransportState.BUFFERING)
        self._reader_task = loop.create_task(self._run(self._socket_path))

    async def _connect_ipc(self, path: str):
        """Connects to the mpv IPC socket with a retry mechanism."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.connect_timeout
        while loop.time() < deadline:
            if self._process is not None and self._process.poll() is not None:
                return None
            try:
                return await asyncio.open_unix_connection(path)
            except (ConnectionRefusedError, FileNotFoundError):
                await asyncio.sleep(0.1)
        logger.error("mpv IPC connection timed out after %s seconds", self.connect_timeout)
        return None

    async def _run(self, socket_path: str) -> None:
        connection = await self._connect_ipc(socket_path)
        if connection is None:
            logger.error("Could not connect to mpv for %s", self._source)
            self._emit(TransportState.ERROR)
            return

        reader, self._writer = connection
        for index, name in enumerate(OBSERVED_PROPERTIES, start=1):
            self._send(["observe_property", index, name])
        self._send(["set_property", "speed", self._rate])
        self._send(["set_property", "volume", self._volume * 100])
        self._send(["set_property", "mute", self._muted])

        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                try:
                    message = json.loads(line.decode('utf-8'))
                except (UnicodeDecodeError, json.JSONDecodeError):
                    continue
                self.handle_message(message)
        except (BrokenPipeError, ConnectionResetError):
            pass
        finally:
            self._writer = None
        logger.debug("mpv IPC connection closed")

    def _send(self, command_list: List[Any]) -> None:
        """Writes a JSON command to mpv without waiting for the reply."""
        if self._writer is None:
            return
        self.request_id_counter += 1
        message = json.dumps({"command": command_list, "request_id": self.request_id_counter}) + "\n"
        try:
            self._writer.write(message.encode('utf-8'))
        except (BrokenPipeError, ConnectionResetError, RuntimeError) as e:
            logger.warning("Error sending IPC command %s: %s", command_list[0], e)

    # --- Incoming events ---

    def handle_message(self, message: Dict[str, Any]) -> None:
        event = message.get("event")
        if event == "property-change":
            self._on_property(message.get("name"), message.get("data"))
        elif event == "end-file":
            reason = message.get("reason")
            if reason == "eof":
                self._emit(TransportState.ENDED)
            elif reason == "error":
                logger.error("mpv could not play %s: %s", self._source, message.get("file_error"))
                self._emit(TransportState.ERROR)
            else:
                # Closed by the user or replaced; no more progress will come
                self._paused = True
                self._emit(TransportState.PAUSED)

    def _on_property(self, name: Optional[str], data: Any) -> None:
        if name == "time-pos" and isinstance(data, (int, float)):
            self._position = float(data)
        elif name == "duration" and isinstance(data, (int, float)):
            self._duration = float(data)
            if not self._initial_seek_done and self._duration > 0:
                self._initial_seek()
        elif name == "pause" and isinstance(data, bool):
            self._paused = data
            self._emit_playback_state()
        elif name == "paused-for-cache" and isinstance(data, bool):
            self._buffering = data
            self._emit_playback_state()
        elif name == "speed" and isinstance(data, (int, float)):
            self._rate = float(data)
        elif name == "volume" and isinstance(data, (int, float)):
            self._volume = float(data) / 100.0
        elif name == "mute" and isinstance(data, bool):
            self._muted = data

    def _initial_seek(self) -> None:
        if self._start_at > 0:
            logger.info("File loaded. Seeking to %s...", self._start_at)
            self._send(["seek", self._start_at, "absolute"])
            self._position = self._start_at
        self._initial_seek_done = True
        if self._want_playing:
            self._send(["set_property", "pause", False])

    def _emit_playback_state(self) -> None:
        if not self._initial_seek_done:
            return
        if self._buffering:
            self._emit(TransportState.BUFFERING)
        elif self._paused:
            self._emit(TransportState.PAUSED)
        else:
            self._emit(TransportState.PLAYING)

    def _emit(self, state: TransportState) -> None:
        if state == self._state:
            return
        self._state = state
        self._listeners.notify(state)

    # --- IMediaTransport ---

    def play(self) -> None:
        self._want_playing = True
        if self._initial_seek_done:
            self._send(["set_property", "pause", False])

    def pause(self) -> None:
        self._want_playing = False
        self._send(["set_property", "pause", True])

    def stop(self) -> None:
        if self._process is None:
            return
        self._send(["quit"])
        if self._reader_task is not None:
            self._reader_task.cancel()
            self._reader_task = None
        if self._process.poll() is None:
            self._process.terminate()
        self._process = None
        self._writer = None
        if self._socket_path and os.path.exists(self._socket_path):
            os.remove(self._socket_path)

    def seek(self, seconds: float) -> None:
        if not self._initial_seek_done:
            self._start_at = seconds
            return
        self._send(["seek", seconds, "absolute"])
        self._position = seconds

    def get_position(self) -> float:
        return self._position

    def get_duration(self) -> float:
        return self._duration

    def get_state(self) -> Optional[TransportState]:
        return self._state

    def get_rate(self) -> float:
        return self._rate

    def set_rate(self, rate: float) -> None:
        self._rate = rate
        self._send(["set_property", "speed", rate])

    def get_volume(self) -> float:
        return self._volume

    def set_volume(self, volume: float) -> None:
        self._volume = volume
        self._send(["set_property", "volume", volume * 100])

    def set_muted(self, muted: bool) -> None:
        self._muted = muted
        self._send(["set_property", "mute", muted])

    def on_state_change(self, callback: StateCallback) -> Unsubscribe:
        return self._listeners.add(callback)
