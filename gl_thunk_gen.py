"""OpenGL thunk generator for opengl32.

Generates the opengl32 export table, the core and extension thunk sources and
the wgl driver function table header from the Khronos gl.xml and wgl.xml
registries.

Usage:
    python gl_thunk_gen.py 1.1 --gl-xml gl.xml --wgl-xml wgl.xml
"""

import argparse
import re
import xml.etree.ElementTree as ET
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import NamedTuple

DEFAULT_GL_XML = Path("gl.xml")
DEFAULT_WGL_XML = Path("wgl.xml")
DEFAULT_OUTPUT_DIR = Path(".")

SPEC_FILENAME = "opengl32.spec"
NORM_FILENAME = "opengl_norm.c"
EXT_FILENAME = "opengl_ext.c"
HEADER_FILENAME = "wgl_driver.h"

REGISTRY_HINT = (
    "Fetch the registry files:\n"
    "  git clone https://github.com/KhronosGroup/OpenGL-Registry.git\n"
    "Then pass --gl-xml OpenGL-Registry/xml/gl.xml --wgl-xml OpenGL-Registry/xml/wgl.xml"
)


# ===--- CLI config contracts ---=== #


class GLVersion(NamedTuple):
    major: int
    minor: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


@dataclass(frozen=True)
class GenerateConfig:
    version: GLVersion
    gl_xml: Path
    wgl_xml: Path
    output_dir: Path
    header_path: Path


VALID_ERROR_CODES = {
    "INVALID_VERSION",
    "PATH_NOT_FOUND",
}
VALID_VERSIONS = ("1.0", "1.1", "1.2", "1.3", "1.4", "1.5")
DEFAULT_VERSION = "1.1"


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


class RegistryError(ValueError):
    """A registry document does not have the shape the generator relies on."""


class TypeResolutionError(ValueError):
    """A registry type has no conversion entry and is not a pointer or array."""

    def __init__(self, type_name: str, function: str | None = None):
        where = f" in {function}" if function else ""
        super().__init__(f"Unknown type {type_name!r}{where}")
        self.type_name = type_name
        self.function = function


def parse_version(raw: str) -> GLVersion:
    if raw not in VALID_VERSIONS:
        raise ConfigError(
            "INVALID_VERSION",
            f"Unsupported OpenGL version: {raw}",
            f"Use one of: {', '.join(VALID_VERSIONS)}.",
        )
    major_text, minor_text = raw.split(".", maxsplit=1)
    return GLVersion(int(major_text), int(minor_text))


def validate_path_exists(
    path: Path | None, flag: str, suggestion: str | None = None
) -> Path:
    if path is None:
        raise ConfigError(
            "PATH_NOT_FOUND",
            f"{flag} is required: no path provided.",
            suggestion or f"Pass the path explicitly: {flag} /path/to/resource",
        )
    if path.exists():
        return path
    raise ConfigError(
        "PATH_NOT_FOUND",
        f"Path for {flag} does not exist: {path}",
        suggestion or "Provide an existing path for this flag.",
    )


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate opengl32 thunks and tables from the OpenGL registry"
    )

    parser.add_argument("version", nargs="?", default=DEFAULT_VERSION)
    parser.add_argument("--gl-xml", type=Path, default=DEFAULT_GL_XML)
    parser.add_argument("--wgl-xml", type=Path, default=DEFAULT_WGL_XML)
    parser.add_argument("--output-dir", type=Path, default=DEFAULT_OUTPUT_DIR)
    parser.add_argument("--header", type=Path, default=None)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def validate_config(args: argparse.Namespace) -> GenerateConfig:
    version = parse_version(args.version)
    gl_xml = validate_path_exists(args.gl_xml, "--gl-xml", REGISTRY_HINT)
    wgl_xml = validate_path_exists(args.wgl_xml, "--wgl-xml", REGISTRY_HINT)
    header_path = args.header
    if header_path is None:
        header_path = args.output_dir / HEADER_FILENAME

    return GenerateConfig(
        version=version,
        gl_xml=gl_xml,
        wgl_xml=wgl_xml,
        output_dir=args.output_dir,
        header_path=header_path,
    )


def build_config(argv: list[str] | None = None) -> GenerateConfig:
    return validate_config(parse_args(argv))


# ===--- Generation toggles ---=== #

# Emit a TRACE line at the top of every thunk.
GEN_TRACES = True
# Bracket every forwarded call with ENTER_GL/LEAVE_GL.
GEN_THREAD_SAFE = False


# ===--- Type conversion table ---=== #


class DebugFormat(NamedTuple):
    """printf specifier used to trace one argument.

    Two-part formats (64-bit integers) carry a wrapper call that converts the
    argument to a string, e.g. `%s` + `wine_dbgstr_longlong(x)`.
    """

    spec: str
    wrapper: str | None = None

    def argument(self, name: str) -> str:
        if self.wrapper is None:
            return name
        return self.wrapper.format(name)


POINTER_FORMAT = DebugFormat("%p")
POINTER_WIDTH = "ptr"


@dataclass(frozen=True)
class TypeInfo:
    """Conversion entry for one registry type.

    Attributes:
        abi: Export table argument width (long, float, double, int64, str, ptr).
        debug: printf specifier for TRACE output. None for types that can
            never be traced (void).
        wrapper: Conversion call for two-part debug formats.
        is_pointer: Opaque handle or pointer typedef; always traced as %p.
    """

    abi: str
    debug: str | None = None
    wrapper: str | None = None
    is_pointer: bool = False


_LONGLONG = "wine_dbgstr_longlong({})"

DEFAULT_TYPES: dict[str, TypeInfo] = {
    "GLbitfield": TypeInfo("long", "%d"),
    "GLboolean": TypeInfo("long", "%d"),
    "GLbyte": TypeInfo("long", "%d"),
    "GLchar": TypeInfo("long", "%c"),
    "GLcharARB": TypeInfo("long", "%c"),
    "GLclampd": TypeInfo("double", "%f"),
    "GLclampf": TypeInfo("float", "%f"),
    "GLclampx": TypeInfo("long", "%d"),
    "GLdouble": TypeInfo("double", "%f"),
    "GLenum": TypeInfo("long", "%d"),
    "GLfixed": TypeInfo("long", "%d"),
    "GLfloat": TypeInfo("float", "%f"),
    "GLhalf": TypeInfo("long", "%d"),
    "GLhalfNV": TypeInfo("long", "%d"),
    "GLhandleARB": TypeInfo("long", "%d"),
    "GLint": TypeInfo("long", "%d"),
    "GLint64": TypeInfo("int64", "%s", _LONGLONG),
    "GLint64EXT": TypeInfo("int64", "%s", _LONGLONG),
    "GLintptr": TypeInfo("long", "%ld"),
    "GLintptrARB": TypeInfo("long", "%ld"),
    "GLshort": TypeInfo("long", "%d"),
    "GLsizei": TypeInfo("long", "%d"),
    "GLsizeiptr": TypeInfo("long", "%ld"),
    "GLsizeiptrARB": TypeInfo("long", "%ld"),
    "GLstring": TypeInfo("str", "%s"),
    "GLsync": TypeInfo("ptr", is_pointer=True),
    "GLubyte": TypeInfo("long", "%d"),
    "GLuint": TypeInfo("long", "%d"),
    "GLuint64": TypeInfo("int64", "%s", _LONGLONG),
    "GLuint64EXT": TypeInfo("int64", "%s", _LONGLONG),
    "GLushort": TypeInfo("long", "%d"),
    "GLvdpauSurfaceNV": TypeInfo("long", "%ld"),
    "GLvoid": TypeInfo("void"),
    "GLDEBUGPROC": TypeInfo("ptr", is_pointer=True),
    "GLDEBUGPROCAMD": TypeInfo("ptr", is_pointer=True),
    "GLDEBUGPROCARB": TypeInfo("ptr", is_pointer=True),
    "GLDEBUGPROCKHR": TypeInfo("ptr", is_pointer=True),
    "GLVULKANPROCNV": TypeInfo("ptr", is_pointer=True),
    "GLeglClientBufferEXT": TypeInfo("ptr", is_pointer=True),
    "GLeglImageOES": TypeInfo("ptr", is_pointer=True),
    "_GLfuncptr": TypeInfo("ptr", is_pointer=True),
    # Platform binding layer
    "BOOL": TypeInfo("long", "%u"),
    "COLORREF": TypeInfo("long", "%u"),
    "DWORD": TypeInfo("long", "%u"),
    "FLOAT": TypeInfo("float", "%f"),
    "HANDLE": TypeInfo("long", is_pointer=True),
    "HDC": TypeInfo("long", is_pointer=True),
    "HENHMETAFILE": TypeInfo("long", is_pointer=True),
    "HGLRC": TypeInfo("long", is_pointer=True),
    "HPBUFFERARB": TypeInfo("long", is_pointer=True),
    "HPBUFFEREXT": TypeInfo("long", is_pointer=True),
    "INT": TypeInfo("long", "%d"),
    "INT32": TypeInfo("long", "%d"),
    "INT64": TypeInfo("int64", "%s", _LONGLONG),
    "LPCSTR": TypeInfo("str", "%s"),
    "LPGLYPHMETRICSFLOAT": TypeInfo("ptr", is_pointer=True),
    "LPLAYERPLANEDESCRIPTOR": TypeInfo("ptr", is_pointer=True),
    "LPPIXELFORMATDESCRIPTOR": TypeInfo("ptr", is_pointer=True),
    "LPVOID": TypeInfo("ptr", is_pointer=True),
    "PROC": TypeInfo("ptr", is_pointer=True),
    "UINT": TypeInfo("long", "%u"),
    "UINT64": TypeInfo("int64", "%s", _LONGLONG),
    "USHORT": TypeInfo("long", "%d"),
    "VOID": TypeInfo("void"),
    "float": TypeInfo("float", "%f"),
    "int": TypeInfo("long", "%d"),
    "unsigned int": TypeInfo("long", "%u"),
    "void": TypeInfo("void"),
}

# Registry type names replaced wholesale in emitted declarations.
DEFAULT_SUBSTITUTIONS: dict[str, str] = {
    "GLstring": "const GLubyte *",
    "GLintptrARB": "INT_PTR",
    "GLsizeiptrARB": "INT_PTR",
    "GLintptr": "INT_PTR",
    "GLsizeiptr": "INT_PTR",
    "GLhandleARB": "unsigned int",
    "GLcharARB": "char",
    "GLchar": "char",
    "GLhalfNV": "unsigned short",
    "GLvdpauSurfaceNV": "INT_PTR",
    "struct _cl_context": "void",
    "struct _cl_event": "void",
    "HGLRC": "struct wgl_context *",
    "GLDEBUGPROC": "void *",
    "GLDEBUGPROCARB": "void *",
    "GLDEBUGPROCAMD": "void *",
    "GLDEBUGPROCKHR": "void *",
    "HPBUFFERARB": "struct wgl_pbuffer *",
    "HPBUFFEREXT": "struct wgl_pbuffer *",
}

# Parameter names that collide with windows.h macros.
DEFAULT_PARAM_RENAMES: dict[str, str] = {
    "near": "nearParam",
    "far": "farParam",
}

VOID_TYPES = frozenset({"void", "GLvoid", "VOID"})

_TYPE_TOKEN_RE = re.compile(r"\*|[A-Za-z_][A-Za-z0-9_]*")
_ARRAY_SUFFIX_RE = re.compile(r"^(\[[^\]]*\])+$")


@dataclass(frozen=True)
class CType:
    """A C type as written in a registry declaration.

    Attributes:
        base: Type name with any leading qualifiers other than const folded in,
            e.g. "GLfloat", "unsigned int", "struct _cl_context".
        is_const: Leading const qualifier.
        pointer: Pointer declarator tokens in order, e.g. ("*",) or
            ("*", "const", "*").
        array: Array suffix following the declarator name, e.g. "[2]".
    """

    base: str
    is_const: bool = False
    pointer: tuple[str, ...] = ()
    array: str | None = None

    @property
    def pointer_depth(self) -> int:
        return self.pointer.count("*")

    @property
    def is_pointer_or_array(self) -> bool:
        return self.pointer_depth > 0 or self.array is not None

    @property
    def is_void(self) -> bool:
        return self.base in VOID_TYPES and not self.is_pointer_or_array

    @property
    def c_decl(self) -> str:
        """Declaration text without the name; `*` binds to the type."""
        text = f"const {self.base}" if self.is_const else self.base
        for token in self.pointer:
            text += "*" if token == "*" else f" {token}"
        return text

    def declare(self, name: str) -> str:
        return f"{self.c_decl} {name}{self.array or ''}"

    def __str__(self) -> str:
        return f"{self.c_decl}{self.array or ''}"


def parse_c_type(text: str, array: str | None = None) -> CType:
    """Parse registry type text such as `const GLchar *const*` into a CType."""
    tokens = _TYPE_TOKEN_RE.findall(text)
    split = tokens.index("*") if "*" in tokens else len(tokens)
    head, tail = tokens[:split], tokens[split:]
    base_words = [token for token in head if token != "const"]
    if not base_words:
        raise RegistryError(f"Type without a base name: {text!r}")
    return CType(
        base=" ".join(base_words),
        is_const="const" in head,
        pointer=tuple(tail),
        array=array,
    )


@dataclass(frozen=True)
class TypeTable:
    """Immutable registry-type to target-ABI conversion rules."""

    types: Mapping[str, TypeInfo]
    substitutions: Mapping[str, str]
    renames: Mapping[str, str]

    def lookup(self, ctype: CType, function: str | None = None) -> TypeInfo:
        info = self.types.get(ctype.base)
        if info is None:
            raise TypeResolutionError(str(ctype), function)
        return info

    def resolve(
        self, ctype: CType, function: str | None = None
    ) -> tuple[str, DebugFormat]:
        """Return (export width, debug format) for a registry type.

        Pointer and array types resolve structurally to ("ptr", %p) whether or
        not their base type has an entry. Everything else must have an entry
        with a debug format.

        Raises:
            TypeResolutionError: No entry for a non-pointer type, or an entry
                without a debug format (a by-value void).
        """
        if ctype.is_pointer_or_array:
            return POINTER_WIDTH, POINTER_FORMAT
        info = self.lookup(ctype, function)
        if info.is_pointer:
            return info.abi, POINTER_FORMAT
        if info.debug is None:
            raise TypeResolutionError(str(ctype), function)
        return info.abi, DebugFormat(info.debug, info.wrapper)

    def check_return(self, ctype: CType, function: str | None = None) -> None:
        """Return types need an entry unless they are pointers; void passes."""
        if ctype.is_pointer_or_array or ctype.is_void:
            return
        self.lookup(ctype, function)

    def check_signature(self, func: "FunctionSignature") -> None:
        """Raise TypeResolutionError unless every type of func resolves."""
        self.check_return(func.return_type, func.name)
        for param in func.params:
            self.resolve(param.ctype, func.name)

    def convert(self, ctype: CType) -> CType:
        """Apply whole-name substitution; the substitute's pointers come first."""
        substitute = self.substitutions.get(ctype.base)
        if substitute is None:
            return ctype
        target = parse_c_type(substitute)
        return CType(
            base=target.base,
            is_const=target.is_const or ctype.is_const,
            pointer=target.pointer + ctype.pointer,
            array=ctype.array,
        )

    def rename(self, name: str) -> str:
        return self.renames.get(name, name)


def default_type_table() -> TypeTable:
    return TypeTable(
        types=MappingProxyType(dict(DEFAULT_TYPES)),
        substitutions=MappingProxyType(dict(DEFAULT_SUBSTITUTIONS)),
        renames=MappingProxyType(dict(DEFAULT_PARAM_RENAMES)),
    )


# ===--- Registry document model ---=== #


@dataclass(frozen=True)
class Parameter:
    ctype: CType
    name: str


@dataclass(frozen=True)
class FunctionSignature:
    name: str
    return_type: CType
    params: tuple[Parameter, ...] = ()
    owners: tuple[str, ...] = ()

    @property
    def is_void(self) -> bool:
        return self.return_type.is_void


@dataclass(frozen=True)
class FeatureNode:
    name: str
    api: str
    number: str
    commands: tuple[str, ...]


@dataclass(frozen=True)
class RequireBlock:
    api: str | None
    commands: tuple[str, ...]


@dataclass(frozen=True)
class ExtensionNode:
    name: str
    supported: tuple[str, ...]
    requires: tuple[RequireBlock, ...]

    def supports(self, api: str) -> bool:
        return api in self.supported


@dataclass(frozen=True)
class RegistryDocument:
    commands: Mapping[str, FunctionSignature]
    features: tuple[FeatureNode, ...]
    extensions: tuple[ExtensionNode, ...]

    def command(self, name: str, owner: str) -> FunctionSignature:
        signature = self.commands.get(name)
        if signature is None:
            raise RegistryError(f"{owner} requires unknown command {name}")
        return signature


# ===--- XML parsing ---=== #


def _split_declaration(element: ET.Element, owner: str) -> tuple[str, str, str]:
    """Return (type text, name, trailing text) of a <proto> or <param> node.

    The type text is everything before <name>, with <ptype>/<type> children
    folded back in; the trailing text holds array suffixes.
    """
    name_el = element.find("name")
    if name_el is None or not (name_el.text or "").strip():
        raise RegistryError(f"{owner}: <{element.tag}> has no <name>")
    parts = [element.text or ""]
    for child in element:
        if child is name_el:
            break
        parts.append("".join(child.itertext()))
        parts.append(child.tail or "")
    return "".join(parts), name_el.text.strip(), (name_el.tail or "").strip()


def _array_suffix(trailing: str, owner: str) -> str | None:
    compact = "".join(trailing.split())
    if not compact:
        return None
    if not _ARRAY_SUFFIX_RE.match(compact):
        raise RegistryError(f"{owner}: unexpected text after parameter name: {trailing!r}")
    return compact


def parse_command(element: ET.Element, types: TypeTable) -> FunctionSignature:
    proto = element.find("proto")
    if proto is None:
        raise RegistryError("<command> without <proto>")
    return_text, name, _ = _split_declaration(proto, "command")
    params = []
    for param in element.findall("param"):
        type_text, param_name, trailing = _split_declaration(param, name)
        ctype = parse_c_type(type_text, _array_suffix(trailing, name))
        params.append(Parameter(ctype, types.rename(param_name)))
    return FunctionSignature(name, parse_c_type(return_text), tuple(params))


def _command_names(block: ET.Element) -> tuple[str, ...]:
    return tuple(
        cmd.get("name", "") for cmd in block.findall("command") if cmd.get("name")
    )


def parse_registry(
    root: ET.Element, types: TypeTable, enums: dict[str, str] | None = None
) -> RegistryDocument:
    """Build a typed document from a registry root element.

    Enum extraction runs only when `enums` is given; values are merged into
    it with later definitions overwriting earlier ones, so several passes may
    share the same mapping.
    """
    commands: dict[str, FunctionSignature] = {}
    for element in root.findall("commands/command"):
        signature = parse_command(element, types)
        commands[signature.name] = signature

    if enums is not None:
        for element in root.findall("enums/enum"):
            name = element.get("name")
            value = element.get("value")
            if name and value is not None:
                enums[name] = value

    features = []
    for element in root.findall("feature"):
        name = element.get("name")
        api = element.get("api")
        if not name or not api:
            raise RegistryError("<feature> requires name and api attributes")
        names: list[str] = []
        for req in element.findall("require"):
            names.extend(_command_names(req))
        features.append(
            FeatureNode(name, api, element.get("number", ""), tuple(names))
        )

    extensions = []
    for element in root.findall("extensions/extension"):
        name = element.get("name")
        if not name:
            raise RegistryError("<extension> without a name attribute")
        supported = tuple(
            token for token in element.get("supported", "").split("|") if token
        )
        requires = tuple(
            RequireBlock(req.get("api"), _command_names(req))
            for req in element.findall("require")
        )
        extensions.append(ExtensionNode(name, supported, requires))

    return RegistryDocument(
        commands=MappingProxyType(commands),
        features=tuple(features),
        extensions=tuple(extensions),
    )


def load_registry(
    path: Path, types: TypeTable, enums: dict[str, str] | None = None
) -> RegistryDocument:
    root = ET.parse(path).getroot()
    if root.tag != "registry":
        raise RegistryError(f"{path}: root element is <{root.tag}>, not <registry>")
    return parse_registry(root, types, enums)


# ===--- Classification ---=== #

VERSION_FEATURES: tuple[str, ...] = (
    "GL_VERSION_1_0",
    "GL_VERSION_1_1",
    "GL_VERSION_1_2",
    "GL_VERSION_1_3",
    "GL_VERSION_1_4",
    "GL_VERSION_1_5",
)

RENDER_API = "gl"
BINDING_API = "wgl"

# Owner tag for platform binding extension functions. Their bodies live in
# the hand-written wgl implementation, never in generated thunks.
WGL_EXTENSION_MARKER = "WGL_extension"

SUPPORTED_WGL_EXTENSIONS = frozenset(
    {
        "WGL_ARB_create_context",
        "WGL_ARB_extensions_string",
        "WGL_ARB_make_current_read",
        "WGL_ARB_pbuffer",
        "WGL_ARB_pixel_format",
        "WGL_ARB_render_texture",
        "WGL_EXT_extensions_string",
        "WGL_EXT_swap_control",
        "WGL_NV_vertex_array_range",
        "WGL_WINE_pixel_format_passthrough",
        "WGL_WINE_query_renderer",
    }
)

# Platform binding core commands as they enter the wgl table. None drops the
# command: opengl32 implements it without a driver entry.
WGL_REMAPS: dict[str, str | None] = {
    "ChoosePixelFormat": None,
    "DescribePixelFormat": "wglDescribePixelFormat",
    "GetEnhMetaFilePixelFormat": None,
    "GetPixelFormat": "wglGetPixelFormat",
    "SetPixelFormat": "wglSetPixelFormat",
    "SwapBuffers": "wglSwapBuffers",
    "wglCreateLayerContext": None,
    "wglDescribeLayerPlane": None,
    "wglGetCurrentContext": None,
    "wglGetCurrentDC": None,
    "wglGetLayerPaletteEntries": None,
    "wglRealizeLayerPalette": None,
    "wglSetLayerPaletteEntries": None,
    "wglSwapLayerBuffers": None,
    "wglUseFontBitmaps": None,
    "wglUseFontOutlines": None,
}

_GLINT = CType("GLint")

SEED_FUNCTIONS: tuple[FunctionSignature, ...] = (
    FunctionSignature(
        "glDebugEntry",
        _GLINT,
        (Parameter(_GLINT, "unknown1"), Parameter(_GLINT, "unknown2")),
    ),
)


def version_feature_name(version: GLVersion) -> str:
    return f"GL_VERSION_{version.major}_{version.minor}"


def version_category(version: GLVersion) -> frozenset[str]:
    """Feature names that make up core for version: its own plus all earlier."""
    name = version_feature_name(version)
    if name not in VERSION_FEATURES:
        raise ConfigError(
            "INVALID_VERSION",
            f"Unsupported OpenGL version: {version}",
            f"Use one of: {', '.join(VALID_VERSIONS)}.",
        )
    return frozenset(VERSION_FEATURES[: VERSION_FEATURES.index(name) + 1])


@dataclass(frozen=True)
class ClassifierConfig:
    category: frozenset[str]
    api: str = RENDER_API
    binding_api: str = BINDING_API
    binding_extensions: frozenset[str] = SUPPORTED_WGL_EXTENSIONS
    binding_remaps: Mapping[str, str | None] = field(
        default_factory=lambda: MappingProxyType(dict(WGL_REMAPS))
    )
    seeds: tuple[FunctionSignature, ...] = SEED_FUNCTIONS


@dataclass
class Classification:
    """The three disjoint function buckets, keyed by function name."""

    core: dict[str, FunctionSignature] = field(default_factory=dict)
    legacy: dict[str, FunctionSignature] = field(default_factory=dict)
    extension: dict[str, FunctionSignature] = field(default_factory=dict)

    def is_claimed(self, name: str) -> bool:
        return name in self.core or name in self.legacy or name in self.extension

    def disjoint(self) -> bool:
        core, legacy, ext = set(self.core), set(self.legacy), set(self.extension)
        return not (core & legacy or core & ext or legacy & ext)


def owners_label(func: FunctionSignature) -> str:
    return " ".join(sorted(set(func.owners)))


def is_binding_only(func: FunctionSignature) -> bool:
    return WGL_EXTENSION_MARKER in func.owners


class Classifier:
    """Partition registry functions into core, legacy and extension buckets.

    Documents are added rendering API first, then platform binding. Every
    step leaves earlier claims alone; inside the extension bucket a function
    required by several groups accumulates all of their names.
    """

    def __init__(self, config: ClassifierConfig):
        self.config = config
        self.result = Classification()
        for seed in config.seeds:
            self.result.core[seed.name] = seed

    def add_document(self, doc: RegistryDocument) -> None:
        self._add_core_features(doc)
        self._add_binding_features(doc)
        self._add_later_features(doc)
        self._add_extensions(doc)
        self._add_binding_extensions(doc)

    def _add_core_features(self, doc: RegistryDocument) -> None:
        for feature in doc.features:
            if feature.name not in self.config.category:
                continue
            for name in feature.commands:
                if not self.result.is_claimed(name):
                    self.result.core[name] = doc.command(name, feature.name)

    def _add_binding_features(self, doc: RegistryDocument) -> None:
        remaps = self.config.binding_remaps
        for feature in doc.features:
            if feature.api != self.config.binding_api:
                continue
            for name in feature.commands:
                signature = doc.command(name, feature.name)
                target = remaps.get(name, name)
                if target is None or self.result.is_claimed(target):
                    continue
                self.result.legacy[target] = replace(signature, name=target)

    def _add_later_features(self, doc: RegistryDocument) -> None:
        # Newer core versions are exposed like extensions, owned by the version.
        for feature in doc.features:
            if feature.name in self.config.category or feature.api != self.config.api:
                continue
            for name in feature.commands:
                if self.result.is_claimed(name):
                    continue
                signature = doc.command(name, feature.name)
                self.result.extension[name] = replace(signature, owners=(feature.name,))

    def _add_extensions(self, doc: RegistryDocument) -> None:
        api = self.config.api
        for ext in doc.extensions:
            if not ext.supports(api):
                continue
            for block in ext.requires:
                if block.api is not None and block.api != api:
                    continue
                for name in block.commands:
                    self._claim_extension(doc, name, ext.name)

    def _add_binding_extensions(self, doc: RegistryDocument) -> None:
        for ext in doc.extensions:
            if not ext.supports(self.config.binding_api):
                continue
            if ext.name not in self.config.binding_extensions:
                continue
            for block in ext.requires:
                for name in block.commands:
                    self._claim_extension(doc, name, WGL_EXTENSION_MARKER)

    def _claim_extension(self, doc: RegistryDocument, name: str, owner: str) -> None:
        if name in self.result.core or name in self.result.legacy:
            return
        existing = self.result.extension.get(name)
        if existing is None:
            signature = doc.command(name, owner)
            self.result.extension[name] = replace(signature, owners=(owner,))
        elif owner not in existing.owners:
            self.result.extension[name] = replace(
                existing, owners=existing.owners + (owner,)
            )


def classify(
    documents: Iterable[RegistryDocument], config: ClassifierConfig
) -> Classification:
    classifier = Classifier(config)
    for doc in documents:
        classifier.add_document(doc)
    return classifier.result


# ===--- Thunk rendering ---=== #

MODE_DECLARATION = "declaration"
MODE_THUNK = "thunk"
MODE_STUB = "stub"
RENDER_MODES = (MODE_DECLARATION, MODE_THUNK, MODE_STUB)

TABLE_WGL = "wgl"
TABLE_GL = "gl"
TABLE_EXT = "ext"
SUB_TABLES = (TABLE_WGL, TABLE_GL, TABLE_EXT)

# Hand-written in opengl32; no generated code at all.
HANDWRITTEN_FUNCTIONS = frozenset({"glGetIntegerv", "glGetString"})
# Defined outside generated code but referenced by it.
DECLARATION_ONLY_FUNCTIONS = frozenset({"glDebugEntry"})
THUNK_EXCLUDED = HANDWRITTEN_FUNCTIONS | DECLARATION_ONLY_FUNCTIONS

STUB_SENTINELS: dict[str, str] = {"glGetError": "GL_INVALID_OPERATION"}


@dataclass(frozen=True)
class RenderOptions:
    traces: bool = GEN_TRACES
    thread_safe: bool = GEN_THREAD_SAFE


class ThunkRenderer:
    def __init__(self, types: TypeTable, options: RenderOptions | None = None):
        self.types = types
        self.options = options or RenderOptions()

    def return_type(self, func: FunctionSignature) -> str:
        return self.types.convert(func.return_type).c_decl

    def param_list(self, func: FunctionSignature) -> str:
        if not func.params:
            return "(void)"
        decls = [self.types.convert(p.ctype).declare(p.name) for p in func.params]
        return f"( {', '.join(decls)} )"

    def declaration(self, func: FunctionSignature, storage: str = "") -> str:
        return (
            f"{storage}{self.return_type(func)} WINAPI "
            f"{func.name}{self.param_list(func)}"
        )

    def forward_declaration(self, func: FunctionSignature) -> str:
        return f"extern {self.declaration(func)};\n"

    def trace(self, func: FunctionSignature) -> str:
        formats = []
        arguments = []
        for param in func.params:
            _, debug = self.types.resolve(param.ctype, func.name)
            formats.append(debug.spec)
            arguments.append(debug.argument(param.name))
        args = "".join(f", {argument}" for argument in arguments)
        return f'  TRACE( "({", ".join(formats)})\\n"{args} );'

    def thunk(self, func: FunctionSignature, table: str, storage: str = "") -> str:
        """Forwarding body dispatching through the current thread's table."""
        if table not in SUB_TABLES:
            raise ValueError(f"Unknown function table: {table}")
        trace = self.trace(func)
        call_args = "".join(f" {p.name}," for p in func.params)
        if call_args:
            call_args = call_args[:-1] + " "
        call = f"funcs->{table}.p_{func.name}({call_args});"

        lines = [self.declaration(func, storage), "{"]
        lines.append("  const struct opengl_funcs *funcs = NtCurrentTeb()->glTable;")
        if self.options.thread_safe:
            if not func.is_void:
                lines.append(f"  {self.return_type(func)} ret_value;")
            if self.options.traces:
                lines.append(trace)
            lines.append("  ENTER_GL();")
            lines.append(f"  {call}" if func.is_void else f"  ret_value = {call}")
            lines.append("  LEAVE_GL();")
            if not func.is_void:
                lines.append("  return ret_value;")
        else:
            if self.options.traces:
                lines.append(trace)
            lines.append(f"  {call}" if func.is_void else f"  return {call}")
        lines.append("}")
        return "\n".join(lines) + "\n"

    def stub(self, func: FunctionSignature) -> str:
        sentinel = STUB_SENTINELS.get(func.name)
        if sentinel is not None:
            body = f" return {sentinel}; "
        elif not func.is_void:
            body = " return 0; "
        else:
            body = " "
        return (
            f"static {self.return_type(func)} null_{func.name}"
            f"{self.param_list(func)} {{{body}}}\n"
        )

    def table_member(self, func: FunctionSignature) -> str:
        arg_types = ",".join(str(self.types.convert(p.ctype)) for p in func.params)
        return (
            f"        {self.return_type(func):<10} "
            f"(WINE_GLAPI *p_{func.name})({arg_types or 'void'});"
        )

    def render(
        self,
        func: FunctionSignature,
        mode: str,
        table: str = TABLE_GL,
        storage: str = "",
    ) -> str:
        """Render one function; returns "" when the function gets no code.

        Stub mode covers every function so the null table is always complete.
        Hand-written functions render nothing otherwise, declaration-only
        functions always render a forward declaration, and platform binding
        extension functions get no thunk.
        """
        if mode not in RENDER_MODES:
            raise ValueError(f"Unknown render mode: {mode}")
        if mode == MODE_STUB:
            return self.stub(func)
        if func.name in HANDWRITTEN_FUNCTIONS:
            return ""
        if mode == MODE_DECLARATION or func.name in DECLARATION_ONLY_FUNCTIONS:
            return self.forward_declaration(func)
        if is_binding_only(func):
            return ""
        return self.thunk(func, table, storage)


# ===--- Table layout ---=== #


@dataclass(frozen=True)
class LookupRow:
    name: str
    owners: str
    reference: str

    def render(self) -> str:
        return f'  {{ "{self.name}", "{self.owners}", {self.reference} }}'


@dataclass(frozen=True)
class TableLayout:
    table_decl: str
    lookup_rows: tuple[LookupRow, ...]
    lookup_array: str

    @property
    def count(self) -> int:
        return len(self.lookup_rows)


def table_buckets(
    classification: Classification,
) -> tuple[tuple[str, dict[str, FunctionSignature]], ...]:
    return (
        (TABLE_WGL, classification.legacy),
        (TABLE_GL, classification.core),
        (TABLE_EXT, classification.extension),
    )


def emit_layout(classification: Classification, renderer: ThunkRenderer) -> TableLayout:
    lines = ["struct opengl_funcs", "{"]
    buckets = table_buckets(classification)
    for index, (table, bucket) in enumerate(buckets):
        lines.append("    struct")
        lines.append("    {")
        for name in sorted(bucket):
            lines.append(renderer.table_member(bucket[name]))
        lines.append(f"    }} {table};")
        if index < len(buckets) - 1:
            lines.append("")
    lines.append("};")

    rows = tuple(
        LookupRow(name, owners_label(classification.extension[name]), name)
        for name in sorted(classification.extension)
    )
    array_lines = [f"const OpenGL_extension extension_registry[{len(rows)}] = {{"]
    array_lines.append(",\n".join(row.render() for row in rows))
    array_lines.append("};")

    return TableLayout(
        table_decl="\n".join(lines) + "\n",
        lookup_rows=rows,
        lookup_array="\n".join(line for line in array_lines if line) + "\n",
    )


# ===--- Artifact formatting ---=== #

GENERATED_BANNER = "/* Automatically generated from the Khronos OpenGL registry; DO NOT EDIT! */"

# opengl32 entry points implemented without a driver table slot.
FIXED_WGL_EXPORTS: tuple[tuple[str, str], ...] = (
    ("wglChoosePixelFormat", "long ptr"),
    ("wglCreateLayerContext", "long long"),
    ("wglDescribeLayerPlane", "long long long long ptr"),
    ("wglGetCurrentContext", ""),
    ("wglGetCurrentDC", ""),
    ("wglGetDefaultProcAddress", "str"),
    ("wglGetLayerPaletteEntries", "long long long long ptr"),
    ("wglRealizeLayerPalette", "long long long"),
    ("wglSetLayerPaletteEntries", "long long long long ptr"),
    ("wglSwapLayerBuffers", "long long"),
    ("wglSwapMultipleBuffers", "long ptr"),
    ("wglUseFontBitmapsA", "long long long long"),
    ("wglUseFontBitmapsW", "long long long long"),
    ("wglUseFontOutlinesA", "long long long long float float long ptr"),
    ("wglUseFontOutlinesW", "long long long long float float long ptr"),
)

_DRIVER_VERSION_RE = re.compile(r"^#define WINE_WGL_DRIVER_VERSION (\d+)")


def _export_line(func: FunctionSignature, types: TypeTable) -> str:
    widths = [types.resolve(p.ctype, func.name)[0] for p in func.params]
    return f"@  stdcall {func.name}({' '.join(widths)})"


def format_export_table(classification: Classification, types: TypeTable) -> str:
    lines = [_export_line(classification.core[n], types) for n in sorted(classification.core)]
    lines.extend(
        _export_line(classification.legacy[n], types)
        for n in sorted(classification.legacy)
    )
    for name, args in FIXED_WGL_EXPORTS:
        if name in classification.legacy:
            continue
        lines.append(f"@  stdcall {name}({args})")
    return "\n".join(lines) + "\n"


def format_norm_source(classification: Classification, renderer: ThunkRenderer) -> str:
    out = [
        GENERATED_BANNER,
        "",
        '#include "config.h"',
        "#include <stdarg.h>",
        '#include "winternl.h"',
        '#include "wingdi.h"',
        '#include "wine/wgl.h"',
        '#include "wine/wgl_driver.h"',
        '#include "wine/debug.h"',
        "",
        "WINE_DEFAULT_DEBUG_CHANNEL(opengl);",
    ]
    for name in sorted(classification.core):
        text = renderer.render(classification.core[name], MODE_THUNK, TABLE_GL)
        if text:
            out.append("")
            out.append(text.rstrip("\n"))

    out.append("")
    buckets = table_buckets(classification)
    for _, bucket in buckets:
        for name in sorted(bucket):
            out.append(renderer.render(bucket[name], MODE_STUB).rstrip("\n"))

    out.append("")
    out.append("struct opengl_funcs null_opengl_funcs =")
    out.append("{")
    for index, (_, bucket) in enumerate(buckets):
        out.append("    {")
        out.extend(f"        null_{name}," for name in sorted(bucket))
        out.append("    }," if index < len(buckets) - 1 else "    }")
    out.append("};")
    return "\n".join(out) + "\n"


def format_ext_source(
    classification: Classification, renderer: ThunkRenderer, layout: TableLayout
) -> str:
    out = [
        GENERATED_BANNER,
        "",
        '#include "config.h"',
        "#include <stdarg.h>",
        '#include "opengl_ext.h"',
        '#include "winternl.h"',
        '#include "wingdi.h"',
        '#include "wine/wgl.h"',
        '#include "wine/wgl_driver.h"',
        '#include "wine/debug.h"',
        "",
        "WINE_DEFAULT_DEBUG_CHANNEL(opengl);",
        "",
        f"const int extension_registry_size = {layout.count};",
    ]
    for name in sorted(classification.extension):
        func = classification.extension[name]
        if is_binding_only(func):
            text = renderer.render(func, MODE_DECLARATION)
        else:
            text = renderer.render(func, MODE_THUNK, TABLE_EXT, storage="static ")
        if text:
            out.append("")
            out.append(text.rstrip("\n"))
    out.append("")
    out.append(layout.lookup_array.rstrip("\n"))
    return "\n".join(out) + "\n"


def format_driver_header(
    classification: Classification, layout: TableLayout, driver_version: int
) -> str:
    out = [
        GENERATED_BANNER,
        "",
        "#ifndef __WINE_WGL_DRIVER_H",
        "#define __WINE_WGL_DRIVER_H",
        "",
        "#ifndef WINE_GLAPI",
        "#define WINE_GLAPI",
        "#endif",
        "",
        f"#define WINE_WGL_DRIVER_VERSION {driver_version}",
        "",
        "struct wgl_context;",
        "struct wgl_pbuffer;",
        "",
        layout.table_decl.rstrip("\n"),
        "",
    ]
    macro = ["#define ALL_WGL_FUNCS"]
    macro.extend(f"    USE_GL_FUNC({name})" for name in sorted(classification.core))
    out.append(" \\\n".join(macro))
    out.append("")
    out.append(
        "extern struct opengl_funcs * CDECL __wine_get_wgl_driver( HDC hdc, UINT version );"
    )
    out.append("extern BOOL CDECL __wine_set_pixel_format( HWND hwnd, int format );")
    out.append("")
    out.append("#endif /* __WINE_WGL_DRIVER_H */")
    return "\n".join(out) + "\n"


def read_driver_version(path: Path) -> int:
    """Return the WINE_WGL_DRIVER_VERSION recorded in an existing header.

    A header that does not exist yet counts as version 0.
    """
    if not path.exists():
        return 0
    with path.open(encoding="utf-8") as header:
        for line in header:
            match = _DRIVER_VERSION_RE.match(line)
            if match:
                return int(match.group(1))
    return 0


# ===--- Writer I/O ---=== #


@dataclass(frozen=True)
class FileWriteResult:
    filename: str
    path: Path
    line_count: int
    byte_count: int


def write_artifact(path: Path, content: str) -> FileWriteResult:
    """Write one generated file, creating parent directories.

    Raises:
        OSError: Propagated directly if the filesystem write fails.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = content.encode("utf-8")
    path.write_bytes(data)
    return FileWriteResult(
        filename=path.name,
        path=path.resolve(),
        line_count=content.count("\n"),
        byte_count=len(data),
    )


# ===--- Pipeline ---=== #


@dataclass(frozen=True)
class GeneratedArtifacts:
    export_table: str
    norm_source: str
    ext_source: str
    driver_header: str
    layout: TableLayout


def build_classification(
    gl_doc: RegistryDocument, wgl_doc: RegistryDocument, version: GLVersion
) -> Classification:
    config = ClassifierConfig(category=version_category(version))
    return classify((gl_doc, wgl_doc), config)


def check_stub_sentinels(classification: Classification, enums: Mapping[str, str]) -> None:
    """Every sentinel returned by a generated stub must be a registry enum."""
    for name, sentinel in STUB_SENTINELS.items():
        if not (name in classification.core or name in classification.extension):
            continue
        if sentinel not in enums:
            raise RegistryError(f"Stub sentinel {sentinel} for {name} is not a registry enum")


def check_types(classification: Classification, types: TypeTable) -> None:
    """Resolve every type of every classified function, whether or not it
    ends up traced or exported.

    Raises:
        TypeResolutionError: First function using a type with no conversion.
    """
    for _, bucket in table_buckets(classification):
        for name in sorted(bucket):
            types.check_signature(bucket[name])


def generate_artifacts(
    classification: Classification,
    types: TypeTable,
    driver_version: int,
    options: RenderOptions | None = None,
) -> GeneratedArtifacts:
    check_types(classification, types)
    renderer = ThunkRenderer(types, options)
    layout = emit_layout(classification, renderer)
    return GeneratedArtifacts(
        export_table=format_export_table(classification, types),
        norm_source=format_norm_source(classification, renderer),
        ext_source=format_ext_source(classification, renderer, layout),
        driver_header=format_driver_header(classification, layout, driver_version),
        layout=layout,
    )


def write_outputs(
    config: GenerateConfig, artifacts: GeneratedArtifacts
) -> tuple[FileWriteResult, ...]:
    """Write the four artifacts; the header goes last."""
    return (
        write_artifact(config.output_dir / SPEC_FILENAME, artifacts.export_table),
        write_artifact(config.output_dir / NORM_FILENAME, artifacts.norm_source),
        write_artifact(config.output_dir / EXT_FILENAME, artifacts.ext_source),
        write_artifact(config.header_path, artifacts.driver_header),
    )


@dataclass(frozen=True)
class GenerationSummary:
    target_version: GLVersion
    core_count: int
    legacy_count: int
    extension_count: int
    driver_version: int
    files: tuple[FileWriteResult, ...]


def run_generate(config: GenerateConfig) -> GenerationSummary:
    """Execute parse -> classify -> render -> write for a GenerateConfig.

    Raises:
        OSError: Registry file not readable or filesystem write failure.
        ET.ParseError: Malformed registry XML.
        RegistryError: Registry document shape violation.
        TypeResolutionError: A function uses a type with no conversion.
    """
    types = default_type_table()
    enums: dict[str, str] = {}

    print(f"Parsing: {config.gl_xml}")
    gl_doc = load_registry(config.gl_xml, types, enums)
    print(f"Parsing: {config.wgl_xml}")
    wgl_doc = load_registry(config.wgl_xml, types)
    print(
        f"  Registry: {len(gl_doc.commands) + len(wgl_doc.commands)} commands, "
        f"{len(enums)} enums"
    )

    classification = build_classification(gl_doc, wgl_doc, config.version)
    print(
        f"  Classified: {len(classification.core)} core, "
        f"{len(classification.legacy)} wgl, "
        f"{len(classification.extension)} extension functions"
    )
    check_stub_sentinels(classification, enums)

    driver_version = read_driver_version(config.header_path) + 1
    artifacts = generate_artifacts(classification, types, driver_version)
    files = write_outputs(config, artifacts)

    summary = GenerationSummary(
        target_version=config.version,
        core_count=len(classification.core),
        legacy_count=len(classification.legacy),
        extension_count=artifacts.layout.count,
        driver_version=driver_version,
        files=files,
    )
    print_generation_summary(summary)
    return summary


# ===--- Summary report ---=== #


def format_generation_summary(summary: GenerationSummary) -> str:
    lines: list[str] = []
    lines.append(f"OpenGL {summary.target_version} thunks generated:")
    lines.append("")
    lines.append(f"  Core functions:       {summary.core_count:>6}")
    lines.append(f"  WGL functions:        {summary.legacy_count:>6}")
    lines.append(f"  Extension functions:  {summary.extension_count:>6}")
    lines.append(f"  Driver table version: {summary.driver_version:>6}")
    lines.append("")
    lines.append("  Files written:")
    for result in summary.files:
        lines.append(f"    {result.filename:<20} {result.line_count:>6,} lines")
    lines.append("")
    return "\n".join(lines)


def print_generation_summary(summary: GenerationSummary) -> None:
    print(format_generation_summary(summary), end="")


# ===--- Main generation ---=== #


def main(argv: list[str] | None = None):
    try:
        config = build_config(argv)
    except ConfigError as err:
        print(f"Config error [{err.code}]: {err.message}")
        if err.suggestion:
            print(f"Hint: {err.suggestion}")
        raise SystemExit(1) from err

    try:
        run_generate(config)
    except (OSError, ET.ParseError) as err:
        print(f"Error: {err}")
        raise SystemExit(1) from err
    except (RegistryError, TypeResolutionError) as err:
        print(f"Error: {err}")
        raise SystemExit(1) from err


if __name__ == "__main__":
    main()
