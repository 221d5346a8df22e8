"""Script snippets evaluated inside the target page."""

from __future__ import annotations

# Counts requestAnimationFrame callbacks until the window elapses.
FPS_SCRIPT = """
(windowMs) => new Promise((resolve) => {
  let frameCount = 0;
  const start = performance.now();
  function tick() {
    frameCount++;
    const elapsed = performance.now() - start;
    if (elapsed >= windowMs) {
      resolve({ fps: (frameCount / elapsed) * 1000, frameCount, elapsed });
    } else {
      requestAnimationFrame(tick);
    }
  }
  requestAnimationFrame(tick);
})
"""

MEMORY_SCRIPT = """
() => {
  if (performance && performance.memory) {
    return {
      jsHeapSizeLimit: performance.memory.jsHeapSizeLimit,
      totalJSHeapSize: performance.memory.totalJSHeapSize,
      usedJSHeapSize: performance.memory.usedJSHeapSize,
    };
  }
  return { error: 'Memory info not available' };
}
"""

GPU_INFO_SCRIPT = """
() => {
  const canvas = document.querySelector('canvas');
  if (!canvas) return { error: 'No canvas found' };
  const gl = canvas.getContext('webgl2') || canvas.getContext('webgl') || canvas.getContext('experimental-webgl');
  if (!gl) return { error: 'Could not initialize WebGL' };
  const debugInfo = gl.getExtension('WEBGL_debug_renderer_info');
  return {
    renderer: debugInfo ? gl.getParameter(debugInfo.UNMASKED_RENDERER_WEBGL) : 'Unknown',
    vendor: debugInfo ? gl.getParameter(debugInfo.UNMASKED_VENDOR_WEBGL) : 'Unknown',
    version: gl.getParameter(gl.VERSION),
    shadingLanguageVersion: gl.getParameter(gl.SHADING_LANGUAGE_VERSION),
    maxTextureSize: gl.getParameter(gl.MAX_TEXTURE_SIZE),
    maxViewportDims: Array.from(gl.getParameter(gl.MAX_VIEWPORT_DIMS) || []),
    maxVertexAttribs: gl.getParameter(gl.MAX_VERTEX_ATTRIBS),
    maxVertexUniformVectors: gl.getParameter(gl.MAX_VERTEX_UNIFORM_VECTORS),
    maxFragmentUniformVectors: gl.getParameter(gl.MAX_FRAGMENT_UNIFORM_VECTORS),
    extensions: gl.getSupportedExtensions() || [],
  };
}
"""


# Feature-status table of the browser's gpu page.
GPU_FEATURES_SCRIPT = """
() => {
  const rows = document.querySelectorAll('.feature-status-container tbody tr');
  if (!rows.length) return { error: 'GPU info container not found' };
  const features = {};
  rows.forEach((row) => {
    const cells = row.querySelectorAll('td');
    if (cells.length >= 2) features[cells[0].textContent.trim()] = cells[1].textContent.trim();
  });
  return features;
}
"""

GPU_PAGE_URL = "chrome://gpu"


def completion_script(expression: str) -> str:
    return f"() => Boolean({expression})"
