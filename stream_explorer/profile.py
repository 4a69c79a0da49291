"""
Persisted user profile and the attribute catalog.

The backend stores the profile as::

    {"topic": ..., "id": ..., "attr": [...], "host": [...], "unit": "s",
     "autofresh": false,
     "attrs": {topic: {"host": {name: true}, "attr": {name: true},
                       "func": {name: {"def": "<python expression>"}}}}}

Entries of ``attr`` are either attribute names or ``{"name": ...}`` objects
referring to a derived attribute of the current topic.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .config import CLUSTER_HOST, DEFAULT_GRANULARITY
from .exceptions import DerivedAttributeError, ProfileError
from .models import DerivedSeries, DirectSeries, Record, SeriesEntry
from .timekeys import Granularity

log = logging.getLogger("StreamExplorer.Profile")

DERIVED_NAME_REGEX = re.compile(r'^[a-z][a-zA-Z0-9_]+$')


def compile_derived(name: str, source: str) -> Callable[[Dict[str, Any]], Any]:
    """
    Evaluate user-supplied expression text into a one-argument function.

    The text is trusted user input and runs unsandboxed, e.g.
    ``lambda h: h.get("bytes", 0) / max(h.get("reqs", 1), 1)``.
    """
    if not DERIVED_NAME_REGEX.match(name):
        raise DerivedAttributeError(name, f"name must match {DERIVED_NAME_REGEX.pattern}")
    try:
        code = compile(source, f"<custom attr {name}>", 'eval')
        function = eval(code, {'math': math}, {})
    except Exception as e:
        raise DerivedAttributeError(name, f"{source} eval failed: {e}") from e
    if not callable(function):
        raise DerivedAttributeError(name, f"{source} is not a function")
    return function


@dataclass
class DerivedDefinition:
    source: str
    function: Callable[[Dict[str, Any]], Any] = field(compare=False, repr=False)


@dataclass
class AttributeCatalog:
    """Hosts and attributes seen for one topic, plus its derived attributes."""
    hosts: Dict[str, bool] = field(default_factory=dict)
    attributes: Dict[str, bool] = field(default_factory=dict)
    functions: Dict[str, DerivedDefinition] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], topic: str = '') -> "AttributeCatalog":
        catalog = cls(hosts=dict(data.get('host') or {}), attributes=dict(data.get('attr') or {}))
        for name, definition in (data.get('func') or {}).items():
            source = definition.get('def', '') if isinstance(definition, dict) else ''
            try:
                catalog.functions[name] = DerivedDefinition(source, compile_derived(name, source))
            except DerivedAttributeError as e:
                log.error(f"[{topic}] Skipping derived attribute: {e}")
        return catalog

    def to_dict(self) -> Dict[str, Any]:
        return {
            'host': dict(self.hosts),
            'attr': dict(self.attributes),
            'func': {name: {'def': d.source} for name, d in self.functions.items()},
        }

    def discover(self, record: Record) -> bool:
        """Register the hosts and attributes of ``record``. True if anything was new."""
        before = (len(self.hosts), len(self.attributes))
        for host, attributes in record.items():
            self.hosts[host] = True
            if isinstance(attributes, dict):
                for attribute in attributes:
                    self.attributes[attribute] = True
        return before != (len(self.hosts), len(self.attributes))

    def search_hosts(self, text: Optional[str] = None) -> List[str]:
        if not text:
            return sorted(self.hosts)
        return [host for host in self.hosts if text in host]


@dataclass(frozen=True)
class AttributeRef:
    name: str
    derived: bool = False

    @classmethod
    def from_json(cls, value) -> "AttributeRef":
        if isinstance(value, dict):
            return cls(str(value.get('name', '')), derived=True)
        return cls(str(value))

    def to_json(self):
        return {'name': self.name} if self.derived else self.name


@dataclass
class Profile:
    topic: str = ''
    series_id: str = ''
    attributes: List[AttributeRef] = field(default_factory=list)
    hosts: List[str] = field(default_factory=list)
    unit: Granularity = Granularity(DEFAULT_GRANULARITY)
    autofresh: bool = False
    catalogs: Dict[str, AttributeCatalog] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Profile":
        if not isinstance(data, dict):
            raise ProfileError(f"profile must be an object, got {type(data).__name__}")
        try:
            unit = Granularity(data.get('unit') or DEFAULT_GRANULARITY)
        except ValueError as e:
            raise ProfileError(f"unknown unit {data.get('unit')!r}") from e

        hosts = data.get('host') or []
        if isinstance(hosts, str):
            hosts = [hosts]
        attrs = data.get('attr') or []
        if isinstance(attrs, (str, dict)):
            attrs = [attrs]

        return cls(
            topic=data.get('topic') or '',
            series_id=data.get('id') or '',
            attributes=[AttributeRef.from_json(a) for a in attrs],
            hosts=[str(h) for h in hosts],
            unit=unit,
            autofresh=bool(data.get('autofresh', False)),
            catalogs={topic: AttributeCatalog.from_dict(c or {}, topic)
                      for topic, c in (data.get('attrs') or {}).items()},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'topic': self.topic,
            'id': self.series_id,
            'attr': [a.to_json() for a in self.attributes],
            'host': list(self.hosts),
            'unit': self.unit.value,
            'autofresh': self.autofresh,
            'attrs': {topic: c.to_dict() for topic, c in self.catalogs.items()},
        }

    def catalog(self, topic: Optional[str] = None) -> AttributeCatalog:
        return self.catalogs.setdefault(topic or self.topic, AttributeCatalog())

    def define_attribute(self, name: str, source: str = '') -> AttributeRef:
        """
        Register a custom attribute on the current topic.

        Empty source registers ``name`` as a plain attribute; otherwise the
        source is compiled into a derived attribute, replacing any previous
        definition of the same name.
        """
        name = name.strip()
        source = source.strip()
        if not name:
            raise DerivedAttributeError(name, "custom attr need a name")
        catalog = self.catalog()
        if not source:
            catalog.attributes[name] = True
            return AttributeRef(name)
        catalog.functions[name] = DerivedDefinition(source, compile_derived(name, source))
        log.info(f"[{self.topic}] Defined derived attribute '{name}'")
        return AttributeRef(name, derived=True)

    def undefine_attribute(self, name: str) -> bool:
        removed = self.catalog().functions.pop(name, None) is not None
        if removed:
            self.attributes = [a for a in self.attributes if not (a.derived and a.name == name)]
        return removed

    def build_selector(self) -> List[SeriesEntry]:
        """Host-major product of the selected hosts and attributes."""
        functions = self.catalog().functions
        selector: List[SeriesEntry] = []
        for host in self.hosts or [CLUSTER_HOST]:
            for ref in self.attributes:
                if not ref.derived:
                    selector.append(DirectSeries(host, ref.name))
                elif ref.name in functions:
                    selector.append(DerivedSeries(host, ref.name, functions[ref.name].function))
                else:
                    log.warning(f"[{self.topic}] Derived attribute '{ref.name}' is not defined, skipped")
        return selector
