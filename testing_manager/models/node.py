"""Test tree nodes, their ids and the URIs that locate their sources."""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, replace

LOCAL_SCHEMES = frozenset(["file"])
SERVER_SCHEMES = frozenset(["isfs", "isfs-readonly"])


@dataclass(frozen=True, kw_only=True)
class ResourceUri:
    """A `scheme://authority/path?query` resource location.

    Authorities such as `iris:user` name a server and namespace rather than a
    host and port, so they are kept verbatim.
    """

    scheme: str
    authority: str = ""
    path: str = "/"
    query: str = ""

    @classmethod
    def parse(cls, value: str) -> "ResourceUri":
        """Parse a URI string produced by `str(uri)`."""
        scheme, sep, rest = value.partition("://")
        if not sep:
            raise ValueError(f"Not a URI: {value!r}")
        rest, _, query = rest.partition("?")
        slash = rest.find("/")
        if slash < 0:
            return cls(scheme=scheme, authority=rest, path="/", query=query)
        return cls(scheme=scheme, authority=rest[:slash], path=rest[slash:], query=query)

    @classmethod
    def file(cls, path: str) -> "ResourceUri":
        """Create a `file` URI for an absolute POSIX path."""
        return cls(scheme="file", path=path)

    def with_path(self, path: str) -> "ResourceUri":
        """Return a copy of this URI with a different path."""
        return replace(self, path=path)

    def join(self, *parts: str) -> "ResourceUri":
        """Return a copy with `parts` appended to the path."""
        base = self.path.rstrip("/")
        tail = "/".join(part.strip("/") for part in parts if part)
        return self.with_path(f"{base}/{tail}" if tail else base or "/")

    @property
    def name(self) -> str:
        """Final path segment."""
        return self.path.rstrip("/").rsplit("/", 1)[-1]

    @property
    def is_local(self) -> bool:
        return self.scheme in LOCAL_SCHEMES

    @property
    def is_server(self) -> bool:
        return self.scheme in SERVER_SCHEMES

    @property
    def query_params(self) -> Mapping[str, str]:
        """Query parameters; bare flags such as `csp` map to an empty string."""
        params: dict[str, str] = {}
        for item in self.query.split("&"):
            if item:
                key, _, value = item.partition("=")
                params[key] = value
        return params

    def __str__(self) -> str:
        text = f"{self.scheme}://{self.authority}{self.path}"
        return f"{text}?{self.query}" if self.query else text


@dataclass(frozen=True, kw_only=True)
class NodeId:
    """Parsed form of a test node id.

    Ids follow `scope:server:NAMESPACE:ClassPath[:TestMethod[:assert]]`. The
    class path of a local folder node ends with `.`; the local root carries an
    empty class path.
    """

    scope: str
    server: str
    namespace: str
    class_path: str = ""
    method: str = ""
    assertion: str = ""

    @classmethod
    def parse(cls, node_id: str) -> "NodeId":
        parts = node_id.split(":")
        if len(parts) < 3:
            raise ValueError(f"Malformed test node id: {node_id!r}")
        parts += [""] * (6 - len(parts))
        return cls(
            scope=parts[0],
            server=parts[1],
            namespace=parts[2],
            class_path=parts[3],
            method=parts[4],
            assertion=":".join(parts[5:]).rstrip(":"),
        )

    @property
    def id_prefix(self) -> str:
        """The first three segments shared by every node of one root."""
        return f"{self.scope}:{self.server}:{self.namespace}"

    @property
    def is_method(self) -> bool:
        return bool(self.method)

    @property
    def is_class(self) -> bool:
        return bool(self.class_path) and not self.class_path.endswith(".") and not self.method

    @property
    def class_name(self) -> str:
        """Dotted class name, or an empty string for roots and folders."""
        return self.class_path if self.class_path and not self.class_path.endswith(".") else ""


@dataclass(eq=False, kw_only=True)
class TestNode:
    """A node of the test tree.

    Nodes compare by identity; the id is what requests and exclusions match on.
    """

    __test__ = False

    id: str
    label: str
    uri: ResourceUri | None = None
    can_resolve_children: bool = False
    supports_coverage: bool = True
    line: int | None = None
    description: str = ""
    error: str | None = None
    parent: "TestNode | None" = field(default=None, repr=False)
    children: dict[str, "TestNode"] = field(default_factory=dict, repr=False)

    @property
    def node_id(self) -> NodeId:
        return NodeId.parse(self.id)

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def add_child(self, child: "TestNode") -> "TestNode":
        """Attach `child` beneath this node, replacing any child with its id."""
        child.parent = self
        self.children[child.id] = child
        return child

    def walk(self) -> Iterator["TestNode"]:
        """Yield this node and all its descendants, depth first."""
        yield self
        for child in self.children.values():
            yield from child.walk()
