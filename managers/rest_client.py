import atexit
import logging
import time

import requests
import urllib3
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from constants import DEFAULT_API_TIMEOUT_MINUTES, REST_TASK_POLL_INTERVAL
from errors import PollTimeoutError, ProviderError, ResourceNotFoundError, TaskError

logger = logging.getLogger('vsprov.rest')

SESSION_HEADER = "vmware-api-session-id"


class RestClient:
    """
    A client for the vCenter Automation (vAPI) REST endpoints under /api.

    Holds an authenticated requests session with retry logic for transient
    server errors. Every call returns the decoded JSON body.
    """

    def __init__(self, host, user, password, port=443, verify_ssl=True,
                 timeout=DEFAULT_API_TIMEOUT_MINUTES * 60):
        """
        :param host: vCenter hostname or address.
        :param user: SSO user name.
        :param password: SSO password.
        :param port: HTTPS port of vCenter.
        :param verify_ssl: Verify the vCenter certificate.
        :param timeout: Default time budget in seconds for long running tasks.
        """
        self.base_url = f"https://{host}:{port}" if port != 443 else f"https://{host}"
        self.user = user
        self.password = password
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.session_id = None
        self.session = requests.Session()

        retries = Retry(total=5, backoff_factor=0.3, status_forcelist=[500, 502, 503, 504])
        self.session.mount('https://', HTTPAdapter(max_retries=retries))
        if not verify_ssl:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def login(self):
        """Creates an API session and stores its token on the requests session."""
        try:
            response = self.session.post(f"{self.base_url}/api/session",
                                         auth=(self.user, self.password),
                                         verify=self.verify_ssl, timeout=60)
        except requests.RequestException as e:
            raise ProviderError(f"could not reach vCenter REST endpoint {self.base_url}: {e}") from e
        if response.status_code not in (200, 201):
            raise ProviderError(f"REST login failed ({response.status_code}): {self._error_text(response)}")
        self.session_id = response.json()
        self.session.headers.update({SESSION_HEADER: self.session_id})
        atexit.register(self.logout)
        logger.debug(f"Created REST session on {self.base_url}")
        return self.session_id

    def logout(self):
        if not self.session_id:
            return
        try:
            self.session.delete(f"{self.base_url}/api/session", verify=self.verify_ssl, timeout=30)
        except requests.RequestException as e:
            logger.warning(f"Failed to close REST session: {e}")
        self.session_id = None
        self.session.headers.pop(SESSION_HEADER, None)

    @staticmethod
    def _error_text(response):
        try:
            body = response.json()
        except ValueError:
            return response.text
        if isinstance(body, dict):
            messages = [m.get("default_message") for m in body.get("messages", []) if m.get("default_message")]
            if messages:
                return "; ".join(messages)
            if body.get("error_type"):
                return body["error_type"]
        return str(body)

    def request(self, method, path, params=None, json=None):
        """
        Sends a request and decodes the response.

        :param method: HTTP verb.
        :param path: Path starting with /api.
        :param params: Query string parameters.
        :param json: Body to send as JSON.
        :return: Decoded JSON body, or None for an empty body.
        :raises ResourceNotFoundError: On HTTP 404.
        :raises ProviderError: On any other non-2xx status.
        """
        url = f"{self.base_url}{path}"
        logger.debug(f"{method} {path} params={params}")
        try:
            response = self.session.request(method, url, params=params, json=json,
                                            verify=self.verify_ssl, timeout=120)
        except requests.RequestException as e:
            raise ProviderError(f"{method} {path} failed: {e}") from e

        if response.status_code == 404:
            raise ResourceNotFoundError(f"{method} {path} failed (404): {self._error_text(response)}")
        if not 200 <= response.status_code < 300:
            raise ProviderError(
                f"{method} {path} failed ({response.status_code}): {self._error_text(response)}"
            )
        if not response.content:
            return None
        return response.json()

    def get(self, path, params=None):
        return self.request("GET", path, params=params)

    def post(self, path, params=None, json=None):
        return self.request("POST", path, params=params, json=json)

    def put(self, path, params=None, json=None):
        return self.request("PUT", path, params=params, json=json)

    def patch(self, path, params=None, json=None):
        return self.request("PATCH", path, params=params, json=json)

    def delete(self, path, params=None, json=None):
        return self.request("DELETE", path, params=params, json=json)

    def wait_for_task(self, task_id, interval=REST_TASK_POLL_INTERVAL, timeout=None,
                      sleep=time.sleep, clock=time.monotonic):
        """
        Blocks until a cis task reaches a terminal state.

        :param task_id: Id returned by an endpoint called with vmw-task=true.
        :param interval: Seconds between polls.
        :param timeout: Seconds before giving up, defaults to the API timeout.
        :return: The task result.
        """
        timeout = self.timeout if timeout is None else timeout
        deadline = clock() + timeout
        while True:
            info = self.get(f"/api/cis/tasks/{task_id}") or {}
            status = info.get("status")
            logger.debug(f"Task {task_id} status: {status}")
            if status == "SUCCEEDED":
                return info.get("result")
            if status == "FAILED":
                error = info.get("error") or {}
                messages = [m.get("default_message") for m in error.get("messages", []) if m.get("default_message")]
                raise TaskError(f"task {task_id} failed: {'; '.join(messages) or error}")
            if clock() + interval > deadline:
                raise PollTimeoutError(f"timeout while waiting for task {task_id}")
            sleep(interval)
