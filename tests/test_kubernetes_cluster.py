from unittest import mock

import pytest
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from podrunner.cluster.kubernetes import KubernetesCluster, PodWatch, container_state, pod_to_event
from podrunner.core.errors import ConfigError
from podrunner.core.models import ContainerState, JobHandle, Phase

HANDLE = JobHandle(name="podrunner-1", namespace="jobs")


def _pod(phase, statuses=None):
    return client.V1Pod(
        metadata=client.V1ObjectMeta(name="podrunner-1"),
        status=client.V1PodStatus(phase=phase, container_statuses=statuses),
    )


def _status(name, state):
    return client.V1ContainerStatus(
        name=name, image="x", image_id="", ready=False, restart_count=0, state=state,
    )


def test_container_state_variants():
    assert container_state(None) is None
    assert container_state(client.V1ContainerState(
        waiting=client.V1ContainerStateWaiting(reason="ImagePullBackOff"))) == ContainerState(waiting_reason="ImagePullBackOff")
    assert container_state(client.V1ContainerState(
        running=client.V1ContainerStateRunning())) == ContainerState(running=True)
    t = container_state(client.V1ContainerState(
        terminated=client.V1ContainerStateTerminated(exit_code=2, reason="Error")))
    assert t.terminated and t.exit_code == 2 and t.terminated_reason == "Error"
    assert container_state(client.V1ContainerState()) == ContainerState()


def test_pod_to_event_picks_target_container():
    pod = _pod("Running", [
        _status("tailer", client.V1ContainerState(running=client.V1ContainerStateRunning())),
        _status("runner", client.V1ContainerState(
            terminated=client.V1ContainerStateTerminated(exit_code=0))),
    ])
    ev = pod_to_event("MODIFIED", pod, "runner")
    assert ev.action == "MODIFIED"
    assert ev.phase == Phase.RUNNING
    assert ev.target.exit_code == 0


def test_pod_to_event_without_statuses():
    ev = pod_to_event("ADDED", _pod("Pending"), "runner")
    assert ev.phase == Phase.PENDING
    assert ev.target is None


def test_unknown_phase_maps_to_unknown():
    assert pod_to_event("ADDED", _pod("Weird"), "runner").phase == Phase.UNKNOWN


@pytest.fixture
def kube():
    c = KubernetesCluster(mock.MagicMock(), "jobs")
    c.core = mock.MagicMock()
    return c


def test_submit_creates_pod(kube):
    kube.core.create_namespaced_pod.return_value = _pod("Pending")
    handle = kube.submit({"metadata": {"name": "podrunner-1"}})
    assert handle == HANDLE
    kube.core.create_namespaced_pod.assert_called_once_with(
        namespace="jobs", body={"metadata": {"name": "podrunner-1"}})


def test_delete_with_zero_grace(kube):
    kube.delete(HANDLE)
    kube.core.delete_namespaced_pod.assert_called_once_with(
        name="podrunner-1", namespace="jobs", grace_period_seconds=0)


def test_delete_missing_pod_is_fine(kube):
    kube.core.delete_namespaced_pod.side_effect = ApiException(status=404, reason="Not Found")
    kube.delete(HANDLE)


def test_delete_other_errors_propagate(kube):
    kube.core.delete_namespaced_pod.side_effect = ApiException(status=403, reason="Forbidden")
    with pytest.raises(ApiException):
        kube.delete(HANDLE)


def test_delete_by_labels_builds_selector(kube):
    kube.delete_by_labels({"runnerId": "abc", "owner": "podrunner"})
    kube.core.delete_collection_namespaced_pod.assert_called_once_with(
        namespace="jobs", label_selector="owner=podrunner,runnerId=abc", grace_period_seconds=0)


def test_close_releases_api_client(kube):
    kube.close()
    kube.api_client.close.assert_called_once_with()


# --------- watch thread ---------

def _item(action, pod):
    return {"type": action, "object": pod}


@pytest.fixture
def mock_watch():
    with mock.patch("podrunner.cluster.kubernetes.watch") as module:
        w = module.Watch.return_value
        w.resource_version = None
        yield w


def _pod_watch(kube, on_event):
    closes = []
    kube.api_client.sanitize_for_serialization.return_value = {"kind": "Pod"}
    return PodWatch(kube, HANDLE, on_event, closes.append), closes


def test_watch_forwards_events_until_closed(kube, mock_watch):
    events = []

    def on_event(ev):
        events.append(ev)
        if len(events) == 2:
            sub.close()

    sub, closes = _pod_watch(kube, on_event)
    mock_watch.stream.return_value = iter([
        _item("ADDED", _pod("Pending")),
        _item("MODIFIED", _pod("Running")),
        _item("MODIFIED", _pod("Succeeded")),
    ])
    sub._run()

    assert [(e.action, e.phase) for e in events] == [("ADDED", Phase.PENDING), ("MODIFIED", Phase.RUNNING)]
    assert events[0].raw == {"kind": "Pod"}
    assert closes == [None]
    mock_watch.stop.assert_called_once_with()
    kwargs = mock_watch.stream.call_args.kwargs
    assert kwargs["field_selector"] == "metadata.name=podrunner-1"
    assert kwargs["namespace"] == "jobs"
    assert kwargs["timeout_seconds"] == kube.watch_timeout_s


def test_watch_rearms_from_last_resource_version(kube, mock_watch):
    events = []

    def on_event(ev):
        events.append(ev)
        mock_watch.resource_version = "42"
        if len(events) == 2:
            sub.close()

    sub, closes = _pod_watch(kube, on_event)
    mock_watch.stream.side_effect = [
        iter([_item("ADDED", _pod("Pending"))]),
        iter([_item("MODIFIED", _pod("Running"))]),
    ]
    sub._run()

    assert len(events) == 2
    assert closes == [None]
    first, second = mock_watch.stream.call_args_list
    assert "resource_version" not in first.kwargs
    assert second.kwargs["resource_version"] == "42"


def test_watch_error_event_ends_stream(kube, mock_watch):
    events = []
    sub, closes = _pod_watch(kube, events.append)
    mock_watch.stream.return_value = iter([{"type": "ERROR", "raw_object": {"code": 410}}])
    sub._run()

    assert events == []
    assert len(closes) == 1
    assert isinstance(closes[0], ApiException)
    assert mock_watch.stream.call_count == 1


def test_watch_failure_is_reported_once(kube, mock_watch):
    sub, closes = _pod_watch(kube, lambda ev: None)
    boom = ConnectionError("connection reset")
    mock_watch.stream.side_effect = boom
    sub._run()
    assert closes == [boom]


def test_watch_closed_before_start_reports_no_cause(kube, mock_watch):
    sub, closes = _pod_watch(kube, lambda ev: None)
    sub.close()
    sub.close()
    sub._run()
    assert closes == [None]
    mock_watch.stream.assert_not_called()
    mock_watch.stop.assert_called_once_with()


# --------- exec reads ---------

@pytest.fixture
def exec_resp():
    resp = mock.MagicMock()
    resp.is_open.return_value = False
    resp.read_stdout.return_value = "data"
    resp.read_stderr.return_value = ""
    resp.returncode = 0
    with mock.patch("podrunner.cluster.kubernetes.stream", return_value=resp) as s:
        resp.stream = s
        yield resp


def test_read_file_cats_path_in_container(kube, exec_resp):
    assert kube.read_file(HANDLE, "tailer", "/output/response.txt") == b"data"

    args, kwargs = exec_resp.stream.call_args
    assert args == (kube.core.connect_get_namespaced_pod_exec, "podrunner-1", "jobs")
    assert kwargs["container"] == "tailer"
    assert kwargs["command"] == ["cat", "/output/response.txt"]
    assert kwargs["_preload_content"] is False
    exec_resp.run_forever.assert_called_once_with(timeout=kube.exec_timeout_s)
    exec_resp.close.assert_called_once_with()


def test_read_file_missing_file(kube, exec_resp):
    exec_resp.read_stdout.return_value = ""
    exec_resp.read_stderr.return_value = "cat: /output/response.txt: No such file or directory\n"
    exec_resp.returncode = 1
    with pytest.raises(FileNotFoundError, match="exited 1: cat: /output/response.txt"):
        kube.read_file(HANDLE, "tailer", "/output/response.txt")
    exec_resp.close.assert_called_once_with()


def test_read_file_times_out(kube, exec_resp):
    exec_resp.is_open.return_value = True
    with pytest.raises(TimeoutError):
        kube.read_file(HANDLE, "tailer", "/output/response.txt")
    exec_resp.read_stdout.assert_not_called()
    exec_resp.close.assert_called_once_with()


def test_connect_error_names_the_runner():
    with mock.patch("podrunner.cluster.kubernetes.config") as cfg:
        cfg.ConfigException = Exception
        cfg.new_client_from_config.side_effect = Exception("no kubeconfig")
        with pytest.raises(ConfigError) as info:
            KubernetesCluster.connect("jobs", context="missing", runner_name="k8s")
    assert info.value.runner_name == "k8s"
