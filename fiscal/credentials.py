# fiscal/credentials.py
"""
Resolução das credenciais SOL usadas no WS-Security da SUNAT.

Ordem de precedência:
  1. Variáveis de ambiente SUNAT_SOL_USER / SUNAT_SOL_PASS
  2. SunatStoreConfig.sol_user / sol_password

A senha nunca aparece em repr, logs, auditoria ou respostas da API.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict

from fiscal.exceptions import SunatConfigurationError


ENV_SOL_USER = "SUNAT_SOL_USER"
ENV_SOL_PASS = "SUNAT_SOL_PASS"

REDACTED = "***"


@dataclass(frozen=True)
class SolCredentials:
    ruc: str
    sol_user: str
    sol_password: str = field(repr=False)
    source: str = "db"

    @property
    def username(self) -> str:
        """
        Usuário do UsernameToken: RUC + usuário SOL (ex.: 20123456789MODDATOS).
        Se o usuário já vier prefixado com o RUC, é usado como está.
        """
        if self.sol_user.startswith(self.ruc):
            return self.sol_user
        return f"{self.ruc}{self.sol_user}"

    def secrets(self) -> tuple[str, ...]:
        return tuple(s for s in (self.sol_password,) if s)

    def sanitized_for_log(self) -> Dict[str, Any]:
        return {
            "ruc": self.ruc,
            "sol_user": self.sol_user,
            "sol_password": REDACTED,
            "source": self.source,
        }


def load_sol_credentials(store_config) -> SolCredentials:
    """
    Monta as credenciais SOL para a loja.

    Levanta SunatConfigurationError quando faltar usuário ou senha.
    """
    ruc = (getattr(store_config, "ruc", "") or "").strip()
    if not ruc:
        raise SunatConfigurationError("Loja sem RUC configurado para a SUNAT.")

    env_user = os.environ.get(ENV_SOL_USER, "").strip()
    env_pass = os.environ.get(ENV_SOL_PASS, "")

    if env_user and env_pass:
        return SolCredentials(ruc=ruc, sol_user=env_user, sol_password=env_pass, source="env")

    db_user = (getattr(store_config, "sol_user", "") or "").strip()
    db_pass = getattr(store_config, "sol_password", "") or ""
    if db_user and db_pass:
        return SolCredentials(ruc=ruc, sol_user=db_user, sol_password=db_pass, source="db")

    raise SunatConfigurationError("Credenciais SOL não configuradas para a loja.")
