"""自定义异常模块单元测试

覆盖以下场景：
- 异常层次结构的继承关系
- to_error_dict() 序列化输出
- render() 的单行错误格式
- details 字典的合并逻辑
"""
import pytest

from multi_ssh_mcp.exceptions import (
    AuthConfigError,
    CommandTimeoutError,
    ConfigError,
    ConnectFailureError,
    ConnectTimeoutError,
    CredentialLoadError,
    ExecChannelError,
    SSHError,
    SSHMCPError,
    StreamError,
    UnknownServerError,
)


class TestExceptionHierarchy:
    """异常继承关系测试组。"""

    def test_runtime_errors_inherit_from_ssh_error(self) -> None:
        """所有运行时异常都应继承自 SSHError。"""
        exceptions = [
            UnknownServerError("test"),
            AuthConfigError("test"),
            CredentialLoadError("test"),
            ConnectTimeoutError("test"),
            ConnectFailureError("test"),
            ExecChannelError("test"),
            StreamError("test"),
            CommandTimeoutError("test"),
        ]
        for exc in exceptions:
            assert isinstance(exc, SSHError)
            assert isinstance(exc, SSHMCPError)

    def test_config_error_is_not_runtime_error(self) -> None:
        """ConfigError 属于启动阶段错误，不是 SSHError。"""
        assert issubclass(ConfigError, SSHMCPError)
        assert not issubclass(ConfigError, SSHError)

    def test_command_timeout_is_stream_error(self) -> None:
        assert issubclass(CommandTimeoutError, StreamError)


class TestSSHMCPErrorBase:
    """基础异常测试组。"""

    def test_message_attribute(self) -> None:
        """应正确保存 message 属性。"""
        err = SSHMCPError("测试错误消息")
        assert err.message == "测试错误消息"
        assert str(err) == "测试错误消息"

    def test_default_details_empty(self) -> None:
        """未传入 details 时默认为空字典。"""
        assert SSHMCPError("test").details == {}

    def test_to_error_dict(self) -> None:
        """to_error_dict() 应返回结构化字典。"""
        err = SSHMCPError("测试", details={"ctx": 123})
        d = err.to_error_dict()
        assert d["error_type"] == "SSHMCPError"
        assert d["message"] == "测试"
        assert d["details"] == {"ctx": 123}


class TestSSHError:
    """SSH运行时错误测试组。"""

    def test_render_with_slug(self) -> None:
        err = ConnectFailureError("SSH连接失败: web1:22 - refused", server_slug="web1")
        assert err.render() == "SSHError [web1]: SSH连接失败: web1:22 - refused"

    def test_render_without_slug(self) -> None:
        assert SSHError("boom").render() == "SSHError [unknown]: boom"

    def test_cause_recorded_in_details(self) -> None:
        cause = OSError("Connection refused")
        err = ConnectFailureError("fail", server_slug="web1", cause=cause)
        assert err.cause is cause
        assert err.details["server_slug"] == "web1"
        assert err.details["cause"] == "OSError: Connection refused"

    def test_additional_details_merged(self) -> None:
        err = ConnectFailureError("fail", server_slug="h", details={"port": 2222})
        assert err.details["server_slug"] == "h"
        assert err.details["port"] == 2222

    def test_to_error_dict_type(self) -> None:
        d = UnknownServerError("unknown", server_slug="x").to_error_dict()
        assert d["error_type"] == "UnknownServerError"


class TestSpecificErrors:
    """携带附加属性的异常测试组。"""

    def test_connect_timeout_seconds(self) -> None:
        err = ConnectTimeoutError("timeout", server_slug="web1", timeout_seconds=10.0)
        assert err.timeout_seconds == 10.0
        assert err.details["timeout_seconds"] == 10.0

    def test_stream_error_command(self) -> None:
        err = StreamError("broken", server_slug="web1", command="tail -f x")
        assert err.command == "tail -f x"
        assert err.details["command"] == "tail -f x"

    def test_config_error_issues(self) -> None:
        err = ConfigError("invalid", issues=["servers.0.host: required"])
        assert err.issues == ["servers.0.host: required"]
        assert err.details["issues"] == ["servers.0.host: required"]

    @pytest.mark.parametrize("cls", [ExecChannelError, CredentialLoadError, AuthConfigError])
    def test_slug_attribute(self, cls) -> None:
        assert cls("x", server_slug="db1").server_slug == "db1"
