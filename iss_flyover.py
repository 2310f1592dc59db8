#!/usr/bin/env python3
"""
ISS Flyover Lookup
Finds the caller's public IP, geolocates it and asks for the next
International Space Station passes over that location.
"""

import asyncio
import configparser
import logging
from collections import namedtuple
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

import pytz
import requests

logger = logging.getLogger(__name__)

DEFAULT_IP_URL = 'https://api.ipify.org?format=json'
DEFAULT_GEO_URL = 'https://freegeoip.app/json/'
DEFAULT_PASS_URL = 'https://iss-pass.herokuapp.com/json/'
DEFAULT_TIMEOUT = 30  # seconds

# Data structures
Coordinates = namedtuple('Coordinates', ['latitude', 'longitude'])
PassRecord = namedtuple('PassRecord', ['risetime', 'duration'])


def single_line(text) -> str:
    """Collapse runs of whitespace, newlines included, into single spaces"""
    return ' '.join(str(text).split())


class FlyoverError(Exception):
    """Base error for a failed lookup stage"""

    def __init__(self, stage: str, message: str):
        super().__init__(message)
        self.stage = stage


class TransportError(FlyoverError):
    """The request could not be sent or no response came back"""

    def __init__(self, stage: str, reason: str):
        super().__init__(stage, f"Request failed when {stage}: {single_line(reason)}")
        self.reason = reason


class RemoteError(FlyoverError):
    """A response came back but it was not a usable success

    ``body`` keeps the raw response text; the message holds it on one line.
    """

    def __init__(self, stage: str, status_code: int, body: str):
        super().__init__(stage, f"Status Code {status_code} when {stage}. Response: {single_line(body)}")
        self.status_code = status_code
        self.body = body


@dataclass
class Config:
    """Configuration class to hold all settings"""
    ip_url: str = DEFAULT_IP_URL
    geo_url: str = DEFAULT_GEO_URL
    pass_url: str = DEFAULT_PASS_URL
    timeout: float = DEFAULT_TIMEOUT
    timezone_str: str = ''
    local_tz: Optional[pytz.BaseTzInfo] = None
    log_level: str = 'WARNING'


def load_config(path: str = 'config.ini') -> Config:
    """Load configuration from config.ini, falling back to defaults"""
    config = configparser.ConfigParser()
    config.read(path)

    timezone_str = config.get('display', 'timezone', fallback='').strip()
    # Empty timezone means the system local timezone
    local_tz = pytz.timezone(timezone_str) if timezone_str else None

    log_level = config.get('logging', 'level', fallback='WARNING').strip().upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ValueError(f"Unknown log level: {log_level}")

    return Config(
        ip_url=config.get('endpoints', 'ip_url', fallback=DEFAULT_IP_URL),
        geo_url=config.get('endpoints', 'geo_url', fallback=DEFAULT_GEO_URL),
        pass_url=config.get('endpoints', 'pass_url', fallback=DEFAULT_PASS_URL),
        timeout=config.getfloat('request', 'timeout', fallback=DEFAULT_TIMEOUT),
        timezone_str=timezone_str,
        local_tz=local_tz,
        log_level=log_level
    )


async def get_json(session, url, stage, timeout, params=None):
    """Issue one GET off the event loop and return the decoded JSON body.

    Raises TransportError when no response arrives and RemoteError when the
    status is not 200 or the body is not JSON. There is exactly one attempt.
    """
    logger.debug(f"GET {url} params={params} ({stage})")
    try:
        response = await asyncio.to_thread(session.get, url, params=params, timeout=timeout)
    except requests.exceptions.RequestException as e:
        logger.info(f"No response when {stage}: {e}")
        raise TransportError(stage, str(e)) from e

    if response.status_code != 200:
        logger.info(f"Status {response.status_code} when {stage}")
        raise RemoteError(stage, response.status_code, response.text)

    try:
        return response.json()
    except ValueError as e:
        raise RemoteError(stage, response.status_code, response.text) from e


class IPFetcher:
    """Looks up the caller's public IP address"""

    stage = 'fetching IP'

    def __init__(self, config: Config, session: requests.Session):
        self.config = config
        self.session = session

    async def fetch(self) -> str:
        data = await get_json(self.session, self.config.ip_url, self.stage, self.config.timeout)
        try:
            ip = data['ip']
        except (KeyError, TypeError) as e:
            raise RemoteError(self.stage, 200, str(data)) from e
        if not isinstance(ip, str):
            raise RemoteError(self.stage, 200, str(data))
        logger.info(f"Public IP: {ip}")
        return ip


class GeoResolver:
    """Resolves approximate coordinates for an IP address"""

    def __init__(self, config: Config, session: requests.Session):
        self.config = config
        self.session = session

    async def resolve(self, ip: str) -> Coordinates:
        stage = f'fetching coordinates for IP {ip}'
        url = self.config.geo_url.rstrip('/') + '/' + ip
        data = await get_json(self.session, url, stage, self.config.timeout)
        try:
            coords = Coordinates(latitude=data['latitude'], longitude=data['longitude'])
        except (KeyError, TypeError) as e:
            raise RemoteError(stage, 200, str(data)) from e
        logger.info(f"Coordinates for {ip}: {coords.latitude}, {coords.longitude}")
        return coords


class PassPredictor:
    """Fetches upcoming ISS passes for a location"""

    stage = 'fetching ISS pass times'

    def __init__(self, config: Config, session: requests.Session):
        self.config = config
        self.session = session

    async def predict(self, coords: Coordinates) -> List[PassRecord]:
        params = {'lat': coords.latitude, 'lon': coords.longitude}
        data = await get_json(self.session, self.config.pass_url, self.stage,
                              self.config.timeout, params=params)
        try:
            passes = [PassRecord(risetime=int(p['risetime']), duration=int(p['duration']))
                      for p in data['response']]
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteError(self.stage, 200, str(data)) from e
        logger.info(f"Found {len(passes)} upcoming passes")
        return passes


class FlyoverOrchestrator:
    """Chains IP lookup, geolocation and pass prediction.

    Each stage feeds the next. The first failure propagates unchanged and
    the remaining stages are not run.
    """

    def __init__(self, ip_fetcher, geo_resolver, pass_predictor):
        self.ip_fetcher = ip_fetcher
        self.geo_resolver = geo_resolver
        self.pass_predictor = pass_predictor

    async def next_passes(self) -> List[PassRecord]:
        ip = await self.ip_fetcher.fetch()
        coords = await self.geo_resolver.resolve(ip)
        return await self.pass_predictor.predict(coords)


def build_orchestrator(config: Config, session: requests.Session) -> FlyoverOrchestrator:
    """Wire the three HTTP stages onto one session"""
    return FlyoverOrchestrator(
        IPFetcher(config, session),
        GeoResolver(config, session),
        PassPredictor(config, session)
    )


def format_pass(pass_record: PassRecord, local_tz=None) -> str:
    """Format a single pass as one line of output"""
    rise_utc = datetime.fromtimestamp(pass_record.risetime, tz=timezone.utc)
    rise_local = rise_utc.astimezone(local_tz) if local_tz else rise_utc.astimezone()
    return f"Next pass at {rise_local.strftime('%Y-%m-%d %H:%M:%S %Z')} for {pass_record.duration} seconds!"


def print_pass_times(passes, local_tz=None):
    for pass_record in passes:
        print(format_pass(pass_record, local_tz))
