"""Cluster-state collaborator backed by kubectl.

Everything is read through ``-o json`` so nothing depends on column layout.
"""

import json
import shutil
from datetime import datetime
from pathlib import Path

from .shell import CommandResult, run_command
from .types import CollaboratorError, NodeInfo, StorageClassInfo, WorkloadInfo

DEFAULT_CLASS_ANNOTATION = "storageclass.kubernetes.io/is-default-class"


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _condition(status: dict, kind: str) -> bool:
    for condition in status.get("conditions") or []:
        if condition.get("type") == kind:
            return condition.get("status") == "True"
    return False


def parse_nodes(payload: dict) -> list[NodeInfo]:
    return [
        NodeInfo(
            name=item["metadata"]["name"],
            ready=_condition(item.get("status", {}), "Ready"),
        )
        for item in payload.get("items", [])
    ]


def parse_pod(item: dict) -> WorkloadInfo:
    metadata = item.get("metadata", {})
    status = item.get("status", {})
    containers = status.get("containerStatuses") or []

    reason = status.get("reason") or ""
    waiting_reason = ""
    restarts = 0
    for container in containers:
        restarts += int(container.get("restartCount", 0))
        state = container.get("state") or {}
        if "waiting" in state and not waiting_reason:
            waiting_reason = state["waiting"].get("reason", "")
        if not reason:
            terminated = state.get("terminated") or (
                container.get("lastState") or {}
            ).get("terminated")
            if terminated:
                reason = terminated.get("reason", "")

    return WorkloadInfo(
        name=metadata.get("name", ""),
        namespace=metadata.get("namespace", ""),
        phase=status.get("phase", "Unknown"),
        restart_count=restarts,
        ready=_condition(status, "Ready"),
        reason=reason,
        waiting_reason=waiting_reason,
        created_at=_parse_timestamp(metadata.get("creationTimestamp")),
        terminating=metadata.get("deletionTimestamp") is not None,
        labels=dict(metadata.get("labels") or {}),
    )


class KubectlCluster:
    def __init__(
        self,
        kubectl: str = "kubectl",
        kubeconfig: str | None = None,
        timeout: float = 10.0,
    ):
        self.kubectl = kubectl
        self.kubeconfig = kubeconfig
        self.timeout = timeout

    def binary_path(self) -> str | None:
        return shutil.which(self.kubectl)

    def _run(self, *args: str, timeout: float | None = None) -> CommandResult:
        env = {"KUBECONFIG": self.kubeconfig} if self.kubeconfig else None
        return run_command([self.kubectl, *args], timeout or self.timeout, env=env)

    def _json(self, *args: str) -> dict:
        result = self._run(*args, "-o", "json")
        if not result.ok:
            raise CollaboratorError(
                f"kubectl {' '.join(args)} failed: {result.stderr}", result.stdout
            )
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise CollaboratorError(
                f"kubectl {' '.join(args)} returned invalid JSON", result.stdout
            ) from exc

    def list_nodes(self) -> list[NodeInfo]:
        return parse_nodes(self._json("get", "nodes"))

    def list_workloads(
        self, namespace: str | None = None, selector: str | None = None
    ) -> list[WorkloadInfo]:
        args = ["get", "pods"]
        args += ["-n", namespace] if namespace else ["-A"]
        if selector:
            args += ["-l", selector]
        payload = self._json(*args)
        return [parse_pod(item) for item in payload.get("items", [])]

    def get_workload(self, name: str, namespace: str) -> WorkloadInfo | None:
        result = self._run("get", "pod", name, "-n", namespace, "-o", "json")
        if not result.ok:
            if "NotFound" in result.stderr:
                return None
            raise CollaboratorError(f"kubectl get pod {name} failed: {result.stderr}")
        return parse_pod(json.loads(result.stdout))

    def delete_workload(self, name: str, namespace: str) -> None:
        result = self._run("delete", "pod", name, "-n", namespace, "--wait=false")
        if not result.ok:
            raise CollaboratorError(f"kubectl delete pod {name} failed: {result.stderr}")

    def apply_manifest(self, path: Path | str) -> None:
        result = self._run("apply", "-f", str(path))
        if not result.ok:
            raise CollaboratorError(f"kubectl apply -f {path} failed: {result.stderr}")

    def delete_manifest(self, path: Path | str) -> None:
        result = self._run("delete", "-f", str(path), "--ignore-not-found")
        if not result.ok:
            raise CollaboratorError(f"kubectl delete -f {path} failed: {result.stderr}")

    def exec_in_workload(self, name: str, namespace: str, command: list[str]) -> str:
        result = self._run("exec", "-n", namespace, name, "--", *command)
        if not result.ok:
            raise CollaboratorError(
                f"exec in {namespace}/{name} failed: {result.stderr}", result.stdout
            )
        return result.stdout

    def run_transient(
        self, name: str, image: str, command: list[str], timeout: float = 60.0
    ) -> str:
        """Run a one-off pod to completion and return its output."""
        self._run("delete", "pod", name, "--ignore-not-found")
        result = self._run(
            "run",
            name,
            f"--image={image}",
            "--restart=Never",
            "--rm",
            "-i",
            "--quiet",
            "--command",
            "--",
            *command,
            timeout=timeout,
        )
        if not result.ok:
            raise CollaboratorError(f"pod {name} failed: {result.stderr}", result.stdout)
        return result.stdout

    def get_storage_class(self, name: str) -> StorageClassInfo | None:
        result = self._run("get", "storageclass", name, "-o", "json")
        if not result.ok:
            if "NotFound" in result.stderr:
                return None
            raise CollaboratorError(
                f"kubectl get storageclass {name} failed: {result.stderr}"
            )
        annotations = json.loads(result.stdout).get("metadata", {}).get(
            "annotations"
        ) or {}
        return StorageClassInfo(
            name=name,
            is_default=annotations.get(DEFAULT_CLASS_ANNOTATION) == "true",
        )
