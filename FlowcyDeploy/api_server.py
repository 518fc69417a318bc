import logging
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from deployment_engine import DeploymentEngine
from descriptor import build_flowcy_descriptor
from exceptions import DescriptorValidationError, ParameterValidationError
from models import DeploymentDescriptor
from yaml_renderer import plan_to_dict

logger = logging.getLogger(__name__)

app = FastAPI(title="Flowcy Deploy")

# CORS middleware so the "Deploy to Azure" portal can fetch the template
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


class DeploymentRequest(BaseModel):
    parameters: Dict[str, Any] = {}
    resource_group: Optional[str] = None
    resource_group_location: Optional[str] = None


def get_descriptor() -> DeploymentDescriptor:
    """The descriptor every request works on."""
    return build_flowcy_descriptor()


def _engine(descriptor: DeploymentDescriptor, request: Optional[DeploymentRequest] = None) -> DeploymentEngine:
    if request is None:
        return DeploymentEngine(descriptor=descriptor)
    return DeploymentEngine(
        descriptor=descriptor,
        resource_group=request.resource_group,
        resource_group_location=request.resource_group_location
    )


@app.get("/")
async def root():
    return {"message": "Flowcy deployment descriptor is available at /template"}


@app.get("/health")
async def health(descriptor: DeploymentDescriptor = Depends(get_descriptor)):
    try:
        _engine(descriptor).render_template()
        return {"status": "healthy", "descriptor": "valid"}
    except DescriptorValidationError as e:
        raise HTTPException(status_code=503, detail=f"Descriptor is invalid: {e.message}")


@app.get("/parameters")
async def get_parameters(descriptor: DeploymentDescriptor = Depends(get_descriptor)):
    parameters = []
    for param in descriptor.parameters.values():
        parameters.append({
            "name": param.name,
            "type": param.type,
            "default": param.default,
            "required": param.required,
            "description": param.description,
            "minLength": param.min_length,
            "maxLength": param.max_length,
            "minValue": param.min_value,
            "maxValue": param.max_value,
            "allowedValues": param.allowed_values,
        })
    return {"parameters": parameters}


@app.get("/template")
async def get_template(descriptor: DeploymentDescriptor = Depends(get_descriptor)):
    try:
        return _engine(descriptor).render_template()
    except DescriptorValidationError as e:
        raise HTTPException(status_code=500, detail=[f.as_dict() for f in e.failures])


@app.post("/validate")
async def validate(request: DeploymentRequest, descriptor: DeploymentDescriptor = Depends(get_descriptor)):
    engine = _engine(descriptor, request)
    _, failures = engine.check_parameters(request.parameters)
    if not failures:
        failures = engine.check_descriptor()
    return {
        "valid": not failures,
        "failures": [f.as_dict() for f in failures]
    }


@app.post("/plan")
async def plan(request: DeploymentRequest, descriptor: DeploymentDescriptor = Depends(get_descriptor)):
    engine = _engine(descriptor, request)
    try:
        deployment_plan = engine.prepare(request.parameters)
    except ParameterValidationError as e:
        logger.info("Plan request rejected: %d parameter problem(s)", len(e.failures))
        raise HTTPException(status_code=422, detail=[f.as_dict() for f in e.failures])
    except DescriptorValidationError as e:
        logger.error("Plan request failed: descriptor is invalid")
        raise HTTPException(status_code=500, detail=[f.as_dict() for f in e.failures])

    return {
        "plan": plan_to_dict(deployment_plan),
        "order": deployment_plan.order(),
        "command": engine.format_cli_command(request.parameters)
    }
