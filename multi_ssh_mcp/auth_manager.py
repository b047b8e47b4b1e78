"""SSH凭据解析模块

将服务器描述符中配置的唯一凭据转换为 asyncssh.connect 的认证参数：
- password: 仅密码认证
- private_key_path: 读取私钥文件
- private_key: Base64 解码后导入私钥

所有模式都不会使用 SSH agent 或 ~/.ssh 下的默认私钥。
"""
from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Any

import asyncssh

from multi_ssh_mcp.exceptions import AuthConfigError, CredentialLoadError
from multi_ssh_mcp.server_registry import ServerDescriptor


@dataclass(frozen=True)
class ClientAuth:
    """解析后的客户端认证参数。"""

    username: str
    password: str | None = None
    client_key: asyncssh.SSHKey | None = None

    @property
    def auth_mode(self) -> str:
        return "key" if self.client_key is not None else "password"

    def connect_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"username": self.username, "agent_path": None}
        if self.client_key is not None:
            options["client_keys"] = [self.client_key]
        else:
            options["client_keys"] = None
            options["password"] = self.password
        return options


class AuthManager:
    def resolve(self, descriptor: ServerDescriptor) -> ClientAuth:
        """解析描述符中的凭据。

        Args:
            descriptor: 服务器描述符

        Returns:
            ClientAuth: 可直接用于建立连接的认证参数

        Raises:
            AuthConfigError: 未配置凭据或配置了多个凭据
            CredentialLoadError: 私钥文件不可读或私钥内容无法解码
        """
        mode = descriptor.auth_mode
        if mode == "none":
            raise AuthConfigError(
                f"服务器 {descriptor.slug} 未配置认证方式，"
                "请提供password、privateKeyPath或privateKey之一",
                server_slug=descriptor.slug,
            )
        if mode == "conflict":
            raise AuthConfigError(
                f"服务器 {descriptor.slug} 配置了多种认证方式，只能保留一种",
                server_slug=descriptor.slug,
            )

        if mode == "password":
            return ClientAuth(username=descriptor.username, password=descriptor.password)
        if mode == "key_path":
            return ClientAuth(username=descriptor.username, client_key=self._read_key_file(descriptor))
        return ClientAuth(username=descriptor.username, client_key=self._decode_key_data(descriptor))

    @staticmethod
    def _read_key_file(descriptor: ServerDescriptor) -> asyncssh.SSHKey:
        path = descriptor.private_key_path or ""
        try:
            return asyncssh.read_private_key(path, descriptor.passphrase)
        # KeyImportError 和 KeyEncryptionError 均为 ValueError 子类
        except (OSError, ValueError) as exc:
            raise CredentialLoadError(
                f"无法读取私钥文件 {path}: {exc}",
                server_slug=descriptor.slug,
                cause=exc,
            ) from exc

    @staticmethod
    def _decode_key_data(descriptor: ServerDescriptor) -> asyncssh.SSHKey:
        encoded = "".join((descriptor.private_key or "").split())
        try:
            data = base64.b64decode(encoded, validate=True)
        except binascii.Error as exc:
            raise CredentialLoadError(
                f"服务器 {descriptor.slug} 的privateKey不是合法的Base64: {exc}",
                server_slug=descriptor.slug,
                cause=exc,
            ) from exc

        try:
            return asyncssh.import_private_key(data, descriptor.passphrase)
        except ValueError as exc:
            raise CredentialLoadError(
                f"服务器 {descriptor.slug} 的privateKey无法解析: {exc}",
                server_slug=descriptor.slug,
                cause=exc,
            ) from exc
