"""
FastAPI Backend for the Zi Wei chart.

Exposes chart calculation and the canonical tree text for other clients.
LLM calls are not proxied here.
"""
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from chart_models import Chart
from logic import BirthInput, EphemerisUnavailable, compute_chart, describe_lunar_birth
from tree_text import render_tree

load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env")


class ChartTextResponse(BaseModel):
    """Response for /api/chart/text endpoint."""
    text: str = Field(..., description="Wenmo tree text of the chart")
    lunar_preview: str = Field(..., description="Lunar date and hour branch of the input")


app = FastAPI(
    title="紫微斗数 API",
    description="紫微斗数排盘 API - 命盘计算与文墨天机结构化文本",
    version="2.5.3"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def _compute(data: BirthInput) -> Chart:
    try:
        return compute_chart(data)
    except EphemerisUnavailable as e:
        raise HTTPException(status_code=502, detail=str(e))


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "紫微斗数 API is running"}


@app.post("/api/chart", response_model=Chart)
def get_chart(data: BirthInput):
    """Calculate the twelve-palace chart for a birth input."""
    return _compute(data)


@app.post("/api/chart/text", response_model=ChartTextResponse)
def get_chart_text(data: BirthInput):
    """Return the chart as the Wenmo tree document sent to the LLMs."""
    chart = _compute(data)
    return ChartTextResponse(text=render_tree(chart, data), lunar_preview=describe_lunar_birth(data))


# --- Run with: uvicorn main:app --reload ---
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
