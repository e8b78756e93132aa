from enum import Enum
from typing import Dict, NamedTuple, Optional
import logging

from cerberus import Validator
import requests
import requests.auth
from requests.auth import HTTPBasicAuth

from stock_loader.models.schema_tools import contains_one_of

requests.packages.urllib3.disable_warnings()  # ignore: type

logger = logging.getLogger(__name__)

AuthMethod = Enum("AuthMethod", ["NO_AUTH", "BASIC_AUTH"])
HttpMethod = Enum("HttpMethod", ["GET", "POST", "PUT", "DELETE", "HEAD"])

DEFAULT_TIMEOUT_SECONDS = 60

NO_AUTH_SCHEMA = {
    "nullable": True,
}

BASIC_AUTH_SCHEMA = {
    "type": "dict",
    "schema": {
        "username": {"type": "string", "required": True, "empty": False},
        "password": {"type": "string", "required": True, "empty": False},
    }
}

SCHEMA = {
    "cluster": {
        "type": "dict",
        "schema": {
            "endpoint": {"type": "string", "required": True},
            "allow_insecure": {"type": "boolean", "required": False},
            "timeout_seconds": {"type": "number", "required": False, "min": 1},
            "no_auth": NO_AUTH_SCHEMA,
            "basic_auth": BASIC_AUTH_SCHEMA,
        },
        "check_with": contains_one_of({auth.name.lower() for auth in AuthMethod})
    }
}


class AuthDetails(NamedTuple):
    username: str
    password: str


class Cluster:
    """
    The Elasticsearch or OpenSearch cluster that stock documents are loaded into and queried from.
    """

    config: Dict
    endpoint: str = ""
    auth_type: Optional[AuthMethod] = None
    auth_details: Optional[Dict] = None
    allow_insecure: bool = False
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    def __init__(self, config: Dict) -> None:
        logger.info(f"Initializing cluster with endpoint: {config.get('endpoint')}")
        v = Validator(SCHEMA)
        if not v.validate({'cluster': config}):
            raise ValueError("Invalid config file for cluster", v.errors)

        self.config = config
        self.endpoint = config["endpoint"].rstrip("/")
        self.allow_insecure = config.get("allow_insecure", False) if self.endpoint.startswith(
            "https") else config.get("allow_insecure", True)
        self.timeout_seconds = config.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)
        if 'no_auth' in config:
            self.auth_type = AuthMethod.NO_AUTH
        elif 'basic_auth' in config:
            self.auth_type = AuthMethod.BASIC_AUTH
            self.auth_details = config["basic_auth"]

    def get_basic_auth_details(self) -> AuthDetails:
        assert self.auth_type == AuthMethod.BASIC_AUTH
        assert self.auth_details is not None  # for mypy's sake
        return AuthDetails(username=self.auth_details["username"], password=self.auth_details["password"])

    def _generate_auth_object(self) -> requests.auth.AuthBase | None:
        if self.auth_type == AuthMethod.BASIC_AUTH:
            auth_details = self.get_basic_auth_details()
            return HTTPBasicAuth(auth_details.username, auth_details.password)
        elif self.auth_type is AuthMethod.NO_AUTH:
            return None
        raise NotImplementedError(f"Auth type {self.auth_type} not implemented")

    def call_api(self, path, method: HttpMethod = HttpMethod.GET, data=None, headers=None,
                 timeout=None, session=None, raise_error=True, **kwargs) -> requests.Response:
        """
        Calls an API on the cluster. Connection and timeout failures surface as
        requests.exceptions.RequestException; HTTP error statuses raise HTTPError unless raise_error is False.
        """
        if session is None:
            session = requests.Session()

        r = session.request(
            method.name,
            f"{self.endpoint}{path}",
            verify=(not self.allow_insecure),
            params=kwargs.get('params', {}),
            auth=self._generate_auth_object(),
            data=data,
            json=kwargs.get('json'),
            headers=headers,
            timeout=timeout if timeout is not None else self.timeout_seconds
        )
        logger.info(f"call_api request {method.name} {self.endpoint}{path}, response: {r.status_code} {r.text[:200]}")
        if raise_error:
            r.raise_for_status()
        return r
