"""Deployment validation suite.

Checks every layer of a running deployment, from recorded state down to the
application's API responses, and collects pass/fail results instead of
stopping at the first failure. Without state or an instance address there is
nothing to check against, so the suite stops early in that case.
"""

import logging
import ssl
import time
import warnings
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

import requests
from cryptography import x509

from stackgate.config_manager import DesiredStateConfig
from stackgate.convergence import ConvergenceError, current_instance
from stackgate.modules.inventory import InventoryError, read_inventory_hosts
from stackgate.modules.ssh_connector import READY_TOKEN, SSHConfig, SSHConnector
from stackgate.remote_exec import RemoteExecError, RemoteExecutor, RemoteResult, compose_ps_command
from stackgate.state_store import StateRecord

logger = logging.getLogger(__name__)

HTTP_TIMEOUT = 10
CERT_WARNING_DAYS = 14


@dataclass
class CheckResult:
    name: str
    passed: bool
    detail: str = ""


@dataclass
class ValidationReport:
    results: list[CheckResult] = field(default_factory=list)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.passed)

    @property
    def ok(self) -> bool:
        return bool(self.results) and self.failed == 0

    def add(self, name: str, passed: bool, detail: str = "") -> CheckResult:
        result = CheckResult(name, passed, detail)
        self.results.append(result)
        level = logging.DEBUG if passed else logging.WARNING
        logger.log(level, f"[{'PASS' if passed else 'FAIL'}] {name}: {detail}")
        return result


def fetch_certificate(host: str, port: int = 443, timeout: float = HTTP_TIMEOUT) -> x509.Certificate:
    """Fetch and parse the certificate a TLS server presents for ``host``.

    Raises:
        OSError: On connection or handshake failure
        ValueError: If the certificate cannot be parsed
    """
    pem = ssl.get_server_certificate((host, port), timeout=timeout)
    return x509.load_pem_x509_certificate(pem.encode())


class Validator:
    """
    Run the validation checks.

    Args:
        config: Loaded configuration
        record: Recorded state
        idempotency_check: Returns the reasons apply would change something
            (empty when the deployment is converged); skipped if None
        executor: Remote command executor
        http_get: ``requests.get`` compatible callable
        certificate_fetcher: Returns the x509 certificate for a host
        port_check: ``(host, port) -> bool``
    """

    def __init__(
        self,
        config: DesiredStateConfig,
        record: StateRecord,
        idempotency_check: Callable[[], list[str]] | None = None,
        executor: type[RemoteExecutor] = RemoteExecutor,
        http_get: Callable[..., requests.Response] = requests.get,
        certificate_fetcher: Callable[[str], x509.Certificate] = fetch_certificate,
        port_check: Callable[[str, int], bool] | None = None,
    ):
        self.config = config
        self.record = record
        self.idempotency_check = idempotency_check
        self.executor = executor
        self.http_get = http_get
        self.certificate_fetcher = certificate_fetcher
        self.port_check = port_check or (lambda host, port: SSHConnector.check_port_open(host, port, timeout=5))

    def run(self) -> ValidationReport:
        report = ValidationReport()

        if self.record.is_empty:
            report.add("State", False, f"no state in {self.config.state_dir}; run 'stackgate apply'")
            return report
        report.add("State", True, f"{len(self.record.resources)} resource(s), serial {self.record.serial}")

        try:
            instance, address = current_instance(self.record.resources)
        except ConvergenceError as e:
            report.add("Instance address", False, str(e))
            return report
        report.add("Instance address", True, f"{instance.outputs.get('name', instance.resource_id)} at {address}")

        ssh = SSHConfig(
            host=address,
            user=self.config.cloud.admin_username,
            key_path=self.config.private_key_path,
            port=self.config.ssh.port,
        )
        self._check_remote(report, ssh)
        self._check_ports(report, address)
        self._check_application(report)
        self._check_inventory(report, address)
        self._check_idempotency(report)
        return report

    def _remote(self, ssh: SSHConfig, command: str) -> RemoteResult | str:
        """Run ``command``, returning the result or an error description."""
        try:
            return self.executor.execute_command(ssh, command, timeout=30)
        except RemoteExecError as e:
            return str(e)

    def _check_remote(self, report: ValidationReport, ssh: SSHConfig) -> None:
        result = self._remote(ssh, f"echo {READY_TOKEN}")
        if isinstance(result, str) or READY_TOKEN not in result.stdout:
            detail = result if isinstance(result, str) else (result.stderr.strip() or "no acknowledgement")
            report.add("SSH", False, detail)
            # Nothing else on the host can be checked without SSH
            return
        report.add("SSH", True, f"{ssh.user}@{ssh.host}")

        app_dir = self.config.application.app_dir
        checks = [
            ("Docker", "docker --version"),
            ("Docker Compose", "docker compose version"),
        ]
        for name, command in checks:
            result = self._remote(ssh, command)
            ok = not isinstance(result, str) and result.success and bool(result.stdout.strip())
            report.add(name, ok, result.stdout.strip() if ok else self._failure(result))

        result = self._remote(ssh, compose_ps_command(app_dir, "{{.Name}}: {{.Status}}"))
        if not isinstance(result, str) and result.success and result.stdout.strip():
            report.add("Containers", True, "; ".join(result.stdout.strip().splitlines()))
        else:
            report.add("Containers", False, self._failure(result) or "no containers found")

        result = self._remote(ssh, "docker ps --filter 'name=traefik' --format '{{.Status}}'")
        status = "" if isinstance(result, str) else result.stdout.strip()
        if "healthy" in status and "unhealthy" not in status:
            report.add("Reverse proxy", True, "traefik is healthy")
        elif status.startswith("Up"):
            report.add("Reverse proxy", True, "traefik is up (no health check configured)")
        else:
            report.add("Reverse proxy", False, status or self._failure(result) or "traefik is not running")

        result = self._remote(ssh, "docker exec redis redis-cli ping")
        pong = not isinstance(result, str) and result.stdout.strip() == "PONG"
        report.add("Redis", pong, "PONG" if pong else self._failure(result) or "no PONG")

    def _check_ports(self, report: ValidationReport, address: str) -> None:
        for port, label in ((80, "HTTP"), (443, "HTTPS")):
            ok = self.port_check(address, port)
            report.add(f"Port {port} ({label})", ok, "accessible" if ok else "not accessible")

    def _check_application(self, report: ValidationReport) -> None:
        url = self.config.application.url
        if not url:
            report.add("Application", False, "application.domain_name is not set")
            return

        status = self._http_status(url)
        report.add("Application", isinstance(status, int) and status < 400, f"{url} -> {status}")

        domain = self.config.application.domain_name
        try:
            cert = self.certificate_fetcher(domain)
        except (OSError, ValueError) as e:
            report.add("TLS certificate", False, f"{domain}: {e}")
        else:
            expires = cert.not_valid_after_utc
            days_left = (expires - datetime.now(UTC)).days
            if days_left < 0:
                report.add("TLS certificate", False, f"expired {expires:%Y-%m-%d}")
            else:
                detail = f"expires {expires:%Y-%m-%d} ({days_left} days)"
                if days_left < CERT_WARNING_DAYS:
                    detail += ", renewal due"
                report.add("TLS certificate", True, detail)

        expectations = [
            ("Auth API", "/api/auth/version", 200),
            ("Todos API", "/api/todos", 401),
            ("Users API", "/api/users", 401),
        ]
        for name, path, expected in expectations:
            status = self._http_status(url + path)
            report.add(name, status == expected, f"{path} -> {status} (expected {expected})")

    def _http_status(self, url: str) -> int | str:
        try:
            # Certificates are checked separately; a fresh deployment may still
            # be serving the proxy's default certificate
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                response = self.http_get(url, timeout=HTTP_TIMEOUT, verify=False, allow_redirects=True)
        except requests.RequestException as e:
            return f"error: {e.__class__.__name__}"
        return response.status_code

    def _check_inventory(self, report: ValidationReport, address: str) -> None:
        path = self.config.inventory_path
        try:
            hosts = read_inventory_hosts(path)
        except InventoryError as e:
            report.add("Inventory", False, str(e))
            return
        report.add("Inventory", address in hosts, f"{path.name} lists {', '.join(hosts) or 'no hosts'}")

    def _check_idempotency(self, report: ValidationReport) -> None:
        if self.idempotency_check is None:
            return
        reasons = self.idempotency_check()
        if reasons:
            report.add("Idempotency", False, "; ".join(reasons))
        else:
            report.add("Idempotency", True, "no drift; playbook would not run")

    @staticmethod
    def _failure(result: RemoteResult | str) -> str:
        if isinstance(result, str):
            return result
        return result.stderr.strip() or (f"exit code {result.exit_code}" if not result.success else "")


def wait_for_application(
    url: str,
    attempts: int = 30,
    interval: float = 10.0,
    http_get: Callable[..., requests.Response] = requests.get,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Poll ``url`` until it answers without an HTTP error.

    Returns:
        bool: True if the application responded within the attempt budget
    """
    for attempt in range(1, attempts + 1):
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                response = http_get(url, timeout=HTTP_TIMEOUT, verify=False)
            if response.status_code < 400:
                logger.info(f"Application is responding at {url}")
                return True
            logger.debug(f"Attempt {attempt}: HTTP {response.status_code}")
        except requests.RequestException as e:
            logger.debug(f"Attempt {attempt}: {e.__class__.__name__}")
        if attempt < attempts:
            sleep(interval)
    return False


__all__ = ["CheckResult", "ValidationReport", "Validator", "fetch_certificate", "wait_for_application"]
