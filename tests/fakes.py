"""In-test stand-ins for the model service, deployment host and clock."""

import json
import re

import httpx

from mcp_builder.deploy.host import HostProject
from mcp_builder.http import HttpFetcher
from mcp_builder.models import DeploymentRecord, DeploymentState

SERVER_CODE = """import { Elysia } from "elysia";

const app = new Elysia()
  .get("/health", () => ({ ok: true }))
  .post("/tools/call", ({ body }) => body);

export default app;
"""

OPERATION_ID_RE = re.compile(r'"operationId": "(\w+)"')


def generation_reply(tool_names, code=SERVER_CODE):
    return json.dumps(
        {
            "code": code,
            "tools": [
                {
                    "name": name,
                    "description": f"Call {name}",
                    "schema": {"type": "object", "properties": {}},
                }
                for name in tool_names
            ],
        }
    )


class FakeModel:
    """Answers generation prompts with one tool per operationId in the prompt."""

    def __init__(self, reply=None, code=SERVER_CODE, readme="# Items API\n\nGenerated docs."):
        self.reply = reply
        self.code = code
        self.readme = readme
        self.prompts = []

    async def complete(self, prompt, *, max_tokens=None):
        self.prompts.append(prompt)
        if "technical writer" in prompt:
            return self.readme
        if self.reply is not None:
            return self.reply
        return generation_reply(OPERATION_ID_RE.findall(prompt), self.code)


class FailingModel:
    def __init__(self, error):
        self.error = error

    async def complete(self, prompt, *, max_tokens=None):
        raise self.error


class FakeClock:
    """Virtual time: sleeping advances the clock instantly."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def monotonic(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeHost:
    """HostClient whose deployment walks through a scripted list of states.

    The last state repeats once the script runs out.
    """

    def __init__(self, states=None, domains=None, existing=False):
        self.states = list(states or [DeploymentState.READY])
        self.domains = ["items-api.vercel.app"] if domains is None else domains
        self.existing = existing
        self.created_projects = []
        self.deployments = []
        self.polls = 0

    async def get_project(self, name):
        return HostProject(id="prj_existing", name=name) if self.existing else None

    async def create_project(self, name):
        self.created_projects.append(name)
        return HostProject(id="prj_1", name=name)

    async def create_deployment(self, name, files, env):
        self.deployments.append({"name": name, "files": files, "env": env})
        return DeploymentRecord(
            project_id="prj_1",
            deployment_id="dpl_1",
            state=DeploymentState.QUEUED,
            url=f"{name}-abc123.vercel.app",
        )

    async def get_deployment(self, deployment_id):
        index = min(self.polls, len(self.states) - 1)
        self.polls += 1
        return DeploymentRecord(
            project_id="prj_1",
            deployment_id=deployment_id,
            state=self.states[index],
            url="items-api-abc123.vercel.app",
            error_message="Build failed" if self.states[index] == DeploymentState.ERROR else None,
        )

    async def get_project_domains(self, name):
        return list(self.domains)


def mock_fetcher(handler):
    """HttpFetcher whose requests are answered by ``handler(request)``."""
    return HttpFetcher(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def healthy(request):
    if request.url.path == "/health":
        return httpx.Response(200, json={"ok": True})
    return httpx.Response(404)
