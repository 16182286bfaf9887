"""
AI route optimization for drivers using the GROQ API.

A single chat completion is rendered from a fixed prompt, parsed as JSON and
validated against RouteOptimizationOutput. Anything else is an error.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from groq import Groq
from pydantic import BaseModel, Field, ValidationError

from .auth import get_current_user
from .settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/optimizer", tags=["Route optimizer"])

FAILURE_MESSAGE = "Falha ao otimizar a rota. Tente novamente mais tarde."


class RouteOptimizationInput(BaseModel):
    origin: str = Field(..., min_length=1, description="The starting location of the freight.")
    destination: str = Field(..., min_length=1, description="The destination of the freight.")
    currentLocation: Optional[str] = Field(None, description="The current location of the driver.")
    freightType: str = Field(..., min_length=1, description="The type of freight being transported.")
    vehicleType: str = Field(..., min_length=1, description="The type of vehicle being used.")
    avoidReturnFreight: bool = Field(True, description="Whether to prioritize routes that avoid return freight.")
    preferences: Optional[str] = Field(None, description="Any specific preferences of the driver.")


class RouteOptimizationOutput(BaseModel):
    optimizedRoute: str = Field(..., min_length=1, description="Route with waypoints and estimated travel time.")
    returnFreightSuggestions: Optional[str] = None
    efficiencyTips: Optional[str] = None


class RouteOptimizationError(RuntimeError):
    pass


PROMPT_TEMPLATE = """You are an expert logistics coordinator specializing in optimizing freight routes for drivers. Given the following information, suggest an optimized route and strategies to minimize return freight scenarios.

Origin: {origin}
Destination: {destination}
Current Location: {current_location}
Freight Type: {freight_type}
Vehicle Type: {vehicle_type}
Prioritize Avoiding Return Freight: {avoid_return_freight}
Driver Preferences: {preferences}

Consider factors such as traffic, tolls, fuel efficiency, and availability of return freight opportunities. Provide a detailed route with waypoints and estimated travel time. Also, provide suggestions for securing return freight along the route and efficiency tips for the driver. Optimize the route to increase efficiency and earnings for the driver.

Return strictly valid JSON with the fields:
- optimizedRoute (string, required)
- returnFreightSuggestions (string)
- efficiencyTips (string)"""


def render_prompt(data: RouteOptimizationInput) -> str:
    return PROMPT_TEMPLATE.format(
        origin=data.origin,
        destination=data.destination,
        current_location=data.currentLocation or "",
        freight_type=data.freightType,
        vehicle_type=data.vehicleType,
        avoid_return_freight="true" if data.avoidReturnFreight else "false",
        preferences=data.preferences or "",
    )


def _client() -> Groq:
    if not settings.GROQ_API_KEY:
        raise RuntimeError("GROQ_API_KEY is not set")
    return Groq(api_key=settings.GROQ_API_KEY)


def _parse_json(text: str) -> Dict[str, Any]:
    """Parse JSON from AI response, handling markdown code blocks."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.startswith("json"):
            cleaned = cleaned[4:].strip()
    match = re.search(r"\{[\s\S]*\}", cleaned)
    raw = match.group(0) if match else cleaned
    return json.loads(raw)


def optimize_route(data: RouteOptimizationInput) -> RouteOptimizationOutput:
    """Run one completion and return a fully validated result, or raise."""
    messages = [
        {"role": "system", "content": "You are a freight logistics expert for Brazilian roads. Respond ONLY with valid JSON."},
        {"role": "user", "content": render_prompt(data)},
    ]
    try:
        response = _client().chat.completions.create(
            model=settings.GROQ_TEXT_MODEL,
            messages=messages,
            temperature=0.2,
            max_tokens=1500,
            response_format={"type": "json_object"},
        )
        text = response.choices[0].message.content or ""
        return RouteOptimizationOutput.model_validate(_parse_json(text))
    except (ValidationError, ValueError) as e:
        logger.warning("Route optimizer returned an invalid payload: %s", e)
        raise RouteOptimizationError(FAILURE_MESSAGE) from e
    except Exception as e:
        logger.error("Route optimizer call failed: %s", e)
        raise RouteOptimizationError(FAILURE_MESSAGE) from e


@router.post("/route", response_model=RouteOptimizationOutput)
def optimize_route_endpoint(payload: RouteOptimizationInput, user: Dict[str, Any] = Depends(get_current_user)):
    try:
        return optimize_route(payload)
    except RouteOptimizationError as e:
        raise HTTPException(status_code=502, detail=str(e))
