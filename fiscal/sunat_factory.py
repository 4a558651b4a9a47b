# fiscal/sunat_factory.py
"""
Factory de clients SUNAT por loja / ambiente.

Objetivos:
- Isolar a escolha do client (SOAP real ou mock) em um único ponto.
- Resolver credenciais SOL (ENV antes do banco) antes de montar o client.
- Permitir que testes injetem um client fake sem tocar no handler.
"""

from __future__ import annotations

from typing import Optional, Type

import requests

from fiscal.conf import get_submission_config
from fiscal.credentials import SolCredentials, load_sol_credentials
from fiscal.exceptions import SunatConfigurationError
from fiscal.models import SunatStoreConfig
from fiscal.sunat_clients import (
    MockSunatClient,
    MockSunatClientAlwaysFail,
    SunatClientProtocol,
    SunatSoapClient,
)
from fiscal.sunat_endpoints import ENV_BETA, ENV_PROD, normalize_environment


# Ambiente -> classe de client real.
CLIENT_CLASS_BY_ENVIRONMENT: dict[str, Type[SunatSoapClient]] = {
    ENV_BETA: SunatSoapClient,
    ENV_PROD: SunatSoapClient,
}


def get_store_config(store_id) -> SunatStoreConfig:
    """
    Configuração SUNAT habilitada da loja, ou SunatConfigurationError.
    """
    config = SunatStoreConfig.objects.filter(store_id=store_id).first()
    if config is None:
        raise SunatConfigurationError(f"Loja {store_id} sem configuração SUNAT.")
    if not config.enabled:
        raise SunatConfigurationError(f"Envio SUNAT desabilitado para a loja {store_id}.")
    return config


def get_sunat_client_for_store(
    store_config: SunatStoreConfig,
    *,
    credentials: Optional[SolCredentials] = None,
    session: Optional[requests.Session] = None,
    force_technical_fail: bool = False,
) -> SunatClientProtocol:
    """
    Retorna o client SUNAT apropriado para a loja.

    Regras:
      - force_technical_fail=True → MockSunatClientAlwaysFail (testes).
      - SUNAT_SUBMISSION["USE_MOCK_CLIENT"] → MockSunatClient.
      - Caso contrário, SunatSoapClient do ambiente da loja, com as
        credenciais SOL resolvidas (ENV > banco).
    """
    environment = normalize_environment(store_config.environment)

    if force_technical_fail:
        return MockSunatClientAlwaysFail(environment=environment, ruc=store_config.ruc)

    config = get_submission_config()
    if config.use_mock_client:
        return MockSunatClient(environment=environment, ruc=store_config.ruc)

    creds = credentials or load_sol_credentials(store_config)
    client_cls = CLIENT_CLASS_BY_ENVIRONMENT.get(environment, SunatSoapClient)
    return client_cls(
        environment=environment,
        credentials=creds,
        session=session,
        timeout=config.http_timeout_seconds,
    )
