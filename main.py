from fastapi import FastAPI, UploadFile, File, Form, HTTPException
from fastapi.responses import HTMLResponse, Response
from fastapi.middleware.cors import CORSMiddleware
import os

import md2docx
from md2docx.file_utils import sanitize_file_name

app = FastAPI(title="Markdown <-> DOCX Converter API")

# Enable CORS for frontend integration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

STATIC_DIR = "static"
DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

# Errors caused by the request rather than the server
CLIENT_ERROR_CODES = {"EMPTY_INPUT", "INVALID_TEMPLATE", "INVALID_OPTIONS", "PACKAGE_STRUCTURE_ERROR", "STYLE_ERROR"}

converter = md2docx.MarkdownDocxConverter()


def _raise_for_result(result):
    status = 400 if result.error.code in CLIENT_ERROR_CODES else 500
    raise HTTPException(status_code=status, detail=result.error.to_dict())


@app.get("/", response_class=HTMLResponse)
async def serve_index():
    index_path = os.path.join(STATIC_DIR, "index.html")
    if os.path.exists(index_path):
        with open(index_path, "r", encoding="utf-8") as f:
            return f.read()
    return "Frontend not built yet. POST Markdown to /api/convert."


@app.post("/convert")
@app.post("/api/convert")  # Support both paths
async def convert_md(
    text: str = Form(None),
    file: UploadFile = File(None),
    template: str = Form("simple"),
    mermaid_theme: str = Form("default"),
    toc_generation: bool = Form(False),
    preserve_links: bool = Form(True),
):
    if not text and not file:
        raise HTTPException(status_code=400, detail="No markdown content provided")

    if text:
        content = text
        filename = "document.docx"
    else:
        try:
            content = (await file.read()).decode("utf-8")
        except UnicodeDecodeError:
            raise HTTPException(status_code=400, detail="Markdown upload must be UTF-8 text")
        base = os.path.splitext(file.filename or "document")[0]
        filename = sanitize_file_name(base + ".docx") or "document.docx"

    result = converter.markdown_to_docx(content, {
        "template": template,
        "mermaid_theme": mermaid_theme,
        "toc_generation": toc_generation,
        "preserve_links": preserve_links,
    })
    if not result.success:
        _raise_for_result(result)

    return Response(
        content=result.output,
        media_type=DOCX_MEDIA_TYPE,
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "X-Conversion-Warnings": str(len(result.warnings)),
        },
    )


@app.post("/api/convert/docx")
async def convert_docx(
    file: UploadFile = File(...),
    preserve_formatting: bool = Form(False),
    inline_images: bool = Form(False),
):
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Empty upload")

    result = converter.docx_to_markdown(data, {
        "preserve_formatting": preserve_formatting,
        "inline_images": inline_images,
    })
    if not result.success:
        _raise_for_result(result)
    return result.to_dict()


@app.get("/api/templates")
def list_templates():
    return {
        "templates": converter.get_available_templates(),
        "mermaid_themes": converter.get_available_themes(),
    }


@app.get("/health")
def health_check():
    return {"status": "ok", "version": md2docx.__version__}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
