import sys
import xml.etree.ElementTree as ET
from collections.abc import Callable
from pathlib import Path

import pytest

GENERATOR_DIR = Path(__file__).resolve().parent.parent
if str(GENERATOR_DIR) not in sys.path:
    sys.path.insert(0, str(GENERATOR_DIR))

import gl_thunk_gen as gen  # noqa: E402


GL_REGISTRY_XML = """\
<registry>
  <enums namespace="GL" group="ErrorCode">
    <enum value="0x0502" name="GL_INVALID_OPERATION"/>
    <enum value="0x1F03" name="GL_EXTENSIONS"/>
  </enums>
  <commands namespace="GL">
    <command>
      <proto>void <name>glAccum</name></proto>
      <param group="AccumOp"><ptype>GLenum</ptype> <name>op</name></param>
      <param><ptype>GLfloat</ptype> <name>value</name></param>
    </command>
    <command>
      <proto><ptype>GLenum</ptype> <name>glGetError</name></proto>
    </command>
    <command>
      <proto>void <name>glGetIntegerv</name></proto>
      <param><ptype>GLenum</ptype> <name>pname</name></param>
      <param len="COMPSIZE(pname)"><ptype>GLint</ptype> *<name>data</name></param>
    </command>
    <command>
      <proto>const <ptype>GLubyte</ptype> *<name>glGetString</name></proto>
      <param><ptype>GLenum</ptype> <name>name</name></param>
    </command>
    <command>
      <proto>void <name>glDepthRange</name></proto>
      <param><ptype>GLdouble</ptype> <name>near</name></param>
      <param><ptype>GLdouble</ptype> <name>far</name></param>
    </command>
    <command>
      <proto>void <name>glBindTexture</name></proto>
      <param><ptype>GLenum</ptype> <name>target</name></param>
      <param><ptype>GLuint</ptype> <name>texture</name></param>
    </command>
    <command>
      <proto>void <name>glActiveTexture</name></proto>
      <param><ptype>GLenum</ptype> <name>texture</name></param>
    </command>
    <command>
      <proto>void <name>glActiveTextureARB</name></proto>
      <param><ptype>GLenum</ptype> <name>texture</name></param>
    </command>
    <command>
      <proto>void <name>glShaderSource</name></proto>
      <param><ptype>GLuint</ptype> <name>shader</name></param>
      <param><ptype>GLsizei</ptype> <name>count</name></param>
      <param len="count">const <ptype>GLchar</ptype> *const*<name>string</name></param>
      <param len="count">const <ptype>GLint</ptype> *<name>length</name></param>
    </command>
    <command>
      <proto>void <name>glDebugMessageControl</name></proto>
      <param><ptype>GLenum</ptype> <name>source</name></param>
      <param><ptype>GLenum</ptype> <name>type</name></param>
      <param><ptype>GLenum</ptype> <name>severity</name></param>
      <param><ptype>GLsizei</ptype> <name>count</name></param>
      <param len="count">const <ptype>GLuint</ptype> *<name>ids</name></param>
      <param><ptype>GLboolean</ptype> <name>enabled</name></param>
    </command>
    <command>
      <proto>void <name>glDebugMessageControlKHR</name></proto>
      <param><ptype>GLenum</ptype> <name>source</name></param>
      <param><ptype>GLenum</ptype> <name>type</name></param>
      <param><ptype>GLenum</ptype> <name>severity</name></param>
      <param><ptype>GLsizei</ptype> <name>count</name></param>
      <param len="count">const <ptype>GLuint</ptype> *<name>ids</name></param>
      <param><ptype>GLboolean</ptype> <name>enabled</name></param>
    </command>
    <command>
      <proto>void <name>glUniform1i64NV</name></proto>
      <param><ptype>GLint</ptype> <name>location</name></param>
      <param><ptype>GLint64EXT</ptype> <name>x</name></param>
    </command>
    <command>
      <proto><ptype>GLenum</ptype> <name>glPathGlyphIndexRangeNV</name></proto>
      <param><ptype>GLenum</ptype> <name>fontTarget</name></param>
      <param>const void *<name>fontName</name></param>
      <param><ptype>GLbitfield</ptype> <name>fontStyle</name></param>
      <param><ptype>GLuint</ptype> <name>pathParameterTemplate</name></param>
      <param><ptype>GLfloat</ptype> <name>emScale</name></param>
      <param><ptype>GLuint</ptype> <name>baseAndCount</name>[2]</param>
    </command>
    <command>
      <proto><ptype>GLsync</ptype> <name>glCreateSyncFromCLeventARB</name></proto>
      <param>struct <ptype>_cl_context</ptype> *<name>context</name></param>
      <param>struct <ptype>_cl_event</ptype> *<name>event</name></param>
      <param><ptype>GLbitfield</ptype> <name>flags</name></param>
    </command>
    <command>
      <proto>void <name>glDrawTexsOES</name></proto>
      <param><ptype>GLshort</ptype> <name>x</name></param>
      <param><ptype>GLshort</ptype> <name>y</name></param>
    </command>
  </commands>
  <feature api="gl" name="GL_VERSION_1_0" number="1.0">
    <require>
      <command name="glAccum"/>
      <command name="glDepthRange"/>
      <command name="glGetError"/>
      <command name="glGetIntegerv"/>
      <command name="glGetString"/>
    </require>
  </feature>
  <feature api="gl" name="GL_VERSION_1_1" number="1.1">
    <require>
      <command name="glBindTexture"/>
    </require>
  </feature>
  <feature api="gl" name="GL_VERSION_1_3" number="1.3">
    <require>
      <command name="glActiveTexture"/>
    </require>
  </feature>
  <feature api="gl" name="GL_VERSION_2_0" number="2.0">
    <require>
      <command name="glShaderSource"/>
    </require>
  </feature>
  <feature api="gl" name="GL_VERSION_4_3" number="4.3">
    <require>
      <command name="glDebugMessageControl"/>
    </require>
  </feature>
  <feature api="gles2" name="GL_ES_VERSION_2_0" number="2.0">
    <require>
      <command name="glActiveTexture"/>
      <command name="glShaderSource"/>
    </require>
  </feature>
  <extensions>
    <extension name="GL_ARB_multitexture" supported="gl">
      <require>
        <command name="glActiveTextureARB"/>
      </require>
    </extension>
    <extension name="GL_NV_gpu_shader5" supported="gl|glcore">
      <require>
        <command name="glUniform1i64NV"/>
      </require>
    </extension>
    <extension name="GL_AMD_gpu_shader_int64" supported="gl">
      <require>
        <command name="glUniform1i64NV"/>
      </require>
    </extension>
    <extension name="GL_NV_path_rendering" supported="gl|glcore|gles2">
      <require>
        <command name="glPathGlyphIndexRangeNV"/>
      </require>
    </extension>
    <extension name="GL_ARB_cl_event" supported="gl|glcore">
      <require>
        <command name="glCreateSyncFromCLeventARB"/>
      </require>
    </extension>
    <extension name="GL_KHR_debug" supported="gl|glcore|gles2">
      <require>
        <command name="glDebugMessageControl"/>
      </require>
      <require api="gles2">
        <command name="glDebugMessageControlKHR"/>
      </require>
    </extension>
    <extension name="GL_OES_draw_texture" supported="gles1">
      <require>
        <command name="glDrawTexsOES"/>
      </require>
    </extension>
  </extensions>
</registry>
"""

WGL_REGISTRY_XML = """\
<registry>
  <commands namespace="WGL">
    <command>
      <proto><type>int</type> <name>ChoosePixelFormat</name></proto>
      <param><type>HDC</type> <name>hDc</name></param>
      <param>const <type>PIXELFORMATDESCRIPTOR</type> *<name>pPfd</name></param>
    </command>
    <command>
      <proto><type>BOOL</type> <name>SetPixelFormat</name></proto>
      <param><type>HDC</type> <name>hdc</name></param>
      <param><type>int</type> <name>ipfd</name></param>
      <param>const <type>PIXELFORMATDESCRIPTOR</type> *<name>ppfd</name></param>
    </command>
    <command>
      <proto><type>HGLRC</type> <name>wglCreateContext</name></proto>
      <param><type>HDC</type> <name>hDc</name></param>
    </command>
    <command>
      <proto><type>BOOL</type> <name>wglMakeCurrent</name></proto>
      <param><type>HDC</type> <name>hDc</name></param>
      <param><type>HGLRC</type> <name>newContext</name></param>
    </command>
    <command>
      <proto><type>PROC</type> <name>wglGetProcAddress</name></proto>
      <param><type>LPCSTR</type> <name>lpszProc</name></param>
    </command>
    <command>
      <proto><type>HDC</type> <name>wglGetCurrentDC</name></proto>
    </command>
    <command>
      <proto>const char *<name>wglGetExtensionsStringARB</name></proto>
      <param><type>HDC</type> <name>hdc</name></param>
    </command>
    <command>
      <proto><type>BOOL</type> <name>wglSwapIntervalEXT</name></proto>
      <param><type>int</type> <name>interval</name></param>
    </command>
    <command>
      <proto><type>HPBUFFERARB</type> <name>wglCreatePbufferARB</name></proto>
      <param><type>HDC</type> <name>hDC</name></param>
      <param><type>int</type> <name>iPixelFormat</name></param>
      <param><type>int</type> <name>iWidth</name></param>
      <param><type>int</type> <name>iHeight</name></param>
      <param>const <type>int</type> *<name>piAttribList</name></param>
    </command>
    <command>
      <proto><type>BOOL</type> <name>wglEnableGenlockI3D</name></proto>
      <param><type>HDC</type> <name>hDC</name></param>
    </command>
  </commands>
  <feature api="wgl" name="WGL_VERSION_1_0" number="1.0">
    <require>
      <command name="ChoosePixelFormat"/>
      <command name="SetPixelFormat"/>
      <command name="wglCreateContext"/>
      <command name="wglGetCurrentDC"/>
      <command name="wglGetProcAddress"/>
      <command name="wglMakeCurrent"/>
    </require>
  </feature>
  <extensions>
    <extension name="WGL_ARB_extensions_string" supported="wgl">
      <require>
        <command name="wglGetExtensionsStringARB"/>
      </require>
    </extension>
    <extension name="WGL_EXT_swap_control" supported="wgl">
      <require>
        <command name="wglSwapIntervalEXT"/>
      </require>
    </extension>
    <extension name="WGL_ARB_pbuffer" supported="wgl">
      <require>
        <command name="wglCreatePbufferARB"/>
      </require>
    </extension>
    <extension name="WGL_I3D_genlock" supported="wgl">
      <require>
        <command name="wglEnableGenlockI3D"/>
      </require>
    </extension>
  </extensions>
</registry>
"""


@pytest.fixture
def make_registry_root() -> Callable[[str], ET.Element]:
    def _make_registry_root(inner_xml: str) -> ET.Element:
        return ET.fromstring(f"<registry>{inner_xml}</registry>")

    return _make_registry_root


@pytest.fixture
def type_table() -> gen.TypeTable:
    return gen.default_type_table()


@pytest.fixture
def renderer(type_table: gen.TypeTable) -> gen.ThunkRenderer:
    return gen.ThunkRenderer(type_table)


@pytest.fixture
def gl_document(type_table: gen.TypeTable) -> gen.RegistryDocument:
    return gen.parse_registry(ET.fromstring(GL_REGISTRY_XML), type_table)


@pytest.fixture
def wgl_document(type_table: gen.TypeTable) -> gen.RegistryDocument:
    return gen.parse_registry(ET.fromstring(WGL_REGISTRY_XML), type_table)


@pytest.fixture
def classification(
    gl_document: gen.RegistryDocument, wgl_document: gen.RegistryDocument
) -> gen.Classification:
    return gen.build_classification(gl_document, wgl_document, gen.GLVersion(1, 1))


@pytest.fixture
def write_registries(tmp_path: Path) -> dict[str, Path]:
    gl_xml = tmp_path / "gl.xml"
    gl_xml.write_text(GL_REGISTRY_XML, encoding="utf-8")
    wgl_xml = tmp_path / "wgl.xml"
    wgl_xml.write_text(WGL_REGISTRY_XML, encoding="utf-8")
    return {
        "gl_xml": gl_xml,
        "wgl_xml": wgl_xml,
        "output_dir": tmp_path / "out",
    }


def make_signature(
    name: str,
    return_type: str = "void",
    params: tuple[tuple[str, str], ...] = (),
    owners: tuple[str, ...] = (),
) -> gen.FunctionSignature:
    return gen.FunctionSignature(
        name=name,
        return_type=gen.parse_c_type(return_type),
        params=tuple(gen.Parameter(gen.parse_c_type(t), n) for t, n in params),
        owners=owners,
    )
