import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ubntssh.config import CONNECT_TIMEOUT, DEFAULT_POLL_TIMEOUT, DeviceConfig, HEALTH_CHECK_INTERVAL, config
from ubntssh.errors import DeviceError
from ubntssh.session import DeviceSession, TransportFactory
from ubntssh.transport import TransportHandle
from ubntssh.utils import log_error, make_log_dir, safe_name


def dispatch(
    host: str,
    port: int,
    username: str,
    password: str,
    command: str,
    **kwargs: Any,
) -> str:
    """Connect, run one command, disconnect. Returns the command output."""
    session = DeviceSession(host, port, username, **kwargs)
    try:
        session.authenticate_with_password(password)
        return session.execute(command).output
    finally:
        session.disconnect()


class DeviceManager:
    """Registry of device sessions.

    Sessions are never shared between threads: ``run_on_all`` hands each
    session to exactly one worker.
    """

    def __init__(
        self,
        log_dir: Optional[str] = None,
        health_check_interval: float = HEALTH_CHECK_INTERVAL,
        transport_factory: TransportFactory = TransportHandle,
        verify_host_key: bool = True,
        connect_timeout: float = CONNECT_TIMEOUT,
    ):
        self.log_dirs = make_log_dir(log_dir) if log_dir else None
        self.transport_factory = transport_factory
        self.verify_host_key = verify_host_key
        self.connect_timeout = connect_timeout

        self.sessions: Dict[int, DeviceSession] = {}
        self.next_session_id = 1
        self.lock = threading.Lock()

        self.health_thread_stop = threading.Event()
        self.health_thread: Optional[threading.Thread] = None
        if health_check_interval > 0:
            self.health_thread = threading.Thread(
                target=self._health_loop, args=(health_check_interval,), daemon=True
            )
            self.health_thread.start()

    def _build_session_log_path(self, session_id: int, host: str) -> Optional[str]:
        if not self.log_dirs:
            return None
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = f"s{session_id}__{safe_name(host)}__{stamp}.log"
        return os.path.join(self.log_dirs["sessions_dir"], filename)

    def _health_loop(self, interval: float) -> None:
        while not self.health_thread_stop.wait(interval):
            with self.lock:
                sessions = list(self.sessions.values())
            for session in sessions:
                if session.is_busy():
                    continue
                if not session.check_health():
                    log_error(f"session {session.id} to {session.host} is dead: {session.death_reason}")

    def open_session(
        self,
        host: str,
        port: int,
        username: str,
        password: Optional[str] = None,
        public_key_path: Optional[str] = None,
        private_key_path: Optional[str] = None,
        passphrase: Optional[str] = None,
        poll_timeout: float = DEFAULT_POLL_TIMEOUT,
    ) -> DeviceSession:
        if password is None and not (public_key_path and private_key_path):
            raise ValueError("either password or public/private key paths are required")

        with self.lock:
            sid = self.next_session_id
            self.next_session_id += 1

        session = DeviceSession(
            host,
            port,
            username,
            connect_timeout=self.connect_timeout,
            verify_host_key=self.verify_host_key,
            event_log_path=self._build_session_log_path(sid, host),
            transport_factory=self.transport_factory,
            session_id=sid,
            poll_timeout=poll_timeout,
        )
        try:
            if public_key_path and private_key_path:
                session.authenticate_with_keypair(public_key_path, private_key_path, passphrase)
            else:
                session.authenticate_with_password(password)
        except DeviceError:
            session.disconnect()
            raise

        with self.lock:
            self.sessions[sid] = session
        return session

    def connect_from_config(self, cfg: Optional[DeviceConfig] = None) -> DeviceSession:
        """Open a session from ``UBNT_*`` settings, read from the environment by default."""
        if cfg is None:
            cfg = config.load_from_env()
        if not cfg.UBNT_HOST or not cfg.UBNT_USER:
            raise ValueError("UBNT_HOST and UBNT_USER are required")
        self.verify_host_key = cfg.UBNT_VERIFY_HOST_KEY
        if cfg.uses_keypair():
            return self.open_session(
                cfg.UBNT_HOST,
                cfg.UBNT_PORT,
                cfg.UBNT_USER,
                public_key_path=cfg.UBNT_PUBLIC_KEY,
                private_key_path=cfg.UBNT_PRIVATE_KEY,
                passphrase=cfg.UBNT_KEY_PASSPHRASE,
                poll_timeout=cfg.UBNT_POLL_TIMEOUT,
            )
        return self.open_session(
            cfg.UBNT_HOST,
            cfg.UBNT_PORT,
            cfg.UBNT_USER,
            password=cfg.UBNT_PASSWORD,
            poll_timeout=cfg.UBNT_POLL_TIMEOUT,
        )

    def get_session(self, session_id: int) -> Optional[DeviceSession]:
        with self.lock:
            return self.sessions.get(session_id)

    def close_session(self, session_id: int) -> bool:
        with self.lock:
            session = self.sessions.pop(session_id, None)
        if not session:
            return False
        session.disconnect()
        return True

    def list_sessions(self) -> List[Dict[str, Any]]:
        with self.lock:
            sessions = list(self.sessions.values())

        rows = []
        for session in sessions:
            info = session.info()
            if info["dead"] or not info["alive"]:
                status = "broken"
            elif info["busy"]:
                status = "busy"
            else:
                status = "idle"
            rows.append({"id": session.id, "host": session.host, "status": status})
        rows.sort(key=lambda item: item["id"])
        return rows

    def run_on_all(
        self,
        command: str,
        max_workers: Optional[int] = None,
        **kwargs: Any,
    ) -> Dict[int, Any]:
        """Run ``command`` on every session concurrently.

        Maps session id to its :class:`CommandResult`, or to the
        :class:`DeviceError` that session raised.
        """
        return self.map(lambda session: session.execute(command, **kwargs), max_workers=max_workers)

    def map(
        self,
        func: Callable[[DeviceSession], Any],
        max_workers: Optional[int] = None,
    ) -> Dict[int, Any]:
        with self.lock:
            sessions = [self.sessions[sid] for sid in sorted(self.sessions.keys())]
        if not sessions:
            return {}

        results: Dict[int, Any] = {}
        started = time.time()
        with ThreadPoolExecutor(max_workers=max_workers or len(sessions)) as pool:
            futures = {session.id: pool.submit(_guarded, func, session) for session in sessions}
            for sid, future in futures.items():
                results[sid] = future.result()
        failed = sum(1 for value in results.values() if isinstance(value, DeviceError))
        if failed:
            log_error(f"{failed} of {len(results)} sessions failed ({time.time() - started:.1f}s)")
        return results

    def close_all(self) -> None:
        self.health_thread_stop.set()
        if self.health_thread is not None and self.health_thread is not threading.current_thread():
            self.health_thread.join(timeout=1.0)
        with self.lock:
            sessions = list(self.sessions.values())
            self.sessions.clear()
        for session in sessions:
            session.disconnect()


def _guarded(func: Callable[[DeviceSession], Any], session: DeviceSession) -> Any:
    try:
        return func(session)
    except DeviceError as exc:
        return exc
