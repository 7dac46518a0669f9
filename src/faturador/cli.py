from __future__ import annotations

import getpass
import logging
import os
import sys
from importlib.resources import files

USAGE = """\
Uso: faturador <comando> [argumentos]

  init                               cria arquivos de configuracao
  env [SANDBOX|PRODUCTION]           mostra ou altera o ambiente fiscal
  issue <transacao> <codigo> [desc]  emite a NFS-e de uma transacao
  batch <arquivo.xlsx|csv|yaml>      emissao em lote
  template <arquivo.xlsx|csv>        gera planilha modelo para o lote
  status <transacao>|--all           consulta o status no gateway
  release <transacao> <motivo>       libera nota presa em processamento
  cancel <transacao> <motivo>        cancela uma NFS-e emitida
  cancel-status <transacao>          consulta o pedido de cancelamento
  replace <transacao> <motivo> [--codigo X]
                                     substitui uma NFS-e emitida
  download <transacao> [pdf|xml]     obtem link do PDF/XML
  codes [busca]                      lista codigos de servico
  check                              testa gateway e armazenamento local
"""

PRODUCTION_CONFIRMATION = "PRODUCAO"


def _init_config() -> None:
    """Copy bundled config templates to the user's config/data directories."""
    from faturador.config import get_config_dir, get_data_dir

    config_dir = get_config_dir()
    data_dir = get_data_dir()
    config_dir.mkdir(parents=True, exist_ok=True)
    data_dir.mkdir(parents=True, exist_ok=True)

    dest = config_dir / "tenant.yaml.example"
    if dest.exists():
        print(f"  já existe: {dest}")
    else:
        src = files("faturador") / "templates" / "tenant.yaml.example"
        with src.open("rb") as f:
            dest.write_bytes(f.read())
        print(f"  criado: {dest}")

    print()
    print(f"Configuração: {config_dir}")
    print(f"Dados:   {data_dir}")
    print()
    try:
        answer = input("Deseja armazenar o token do gateway no keychain agora? [s/N]: ")
        if answer.strip().lower() in ("s", "sim", "y", "yes"):
            _setup_token()
    except (EOFError, KeyboardInterrupt):
        print()

    print()
    print("Próximos passos:")
    print(f"  1. cp {dest} {config_dir / 'tenant.yaml'}")
    print("  2. Edite tenant.yaml com os dados da empresa")
    print("  3. Execute: faturador env SANDBOX")


def _setup_token() -> bool:
    """Ask for a tenant id and API token and store it in the OS keyring."""
    from faturador.config import _set_keyring_token

    tenant_id = input("Identificador da empresa (tenant_id): ").strip()
    if not tenant_id:
        print("  Configuração de token pulada.")
        return False
    token = getpass.getpass("Token da API do gateway: ")
    if not token:
        print("  Configuração de token pulada.")
        return False
    if _set_keyring_token(tenant_id, token):
        print("  Token armazenado no keychain do sistema.")
        return True
    print("  ERRO: keychain indisponível. Defina FATURADOR_API_TOKEN no seu .env.")
    return False


def _preflight() -> bool:
    """Verify minimal config before running a fiscal command."""
    from faturador.config import get_config_dir, get_data_dir

    get_data_dir().mkdir(parents=True, exist_ok=True)
    config_dir = get_config_dir()
    if not config_dir.is_dir():
        print(f"Erro: diretório de configuração não encontrado: {config_dir}")
        print("Execute 'faturador init' para criar os arquivos de exemplo.")
        return False
    if not (config_dir / "tenant.yaml").is_file():
        print(f"Erro: tenant.yaml não encontrado em {config_dir}")
        print("Execute 'faturador init' e configure a empresa.")
        return False
    return True


def _context():
    from faturador.config import load_tenant
    from faturador.services.gateway_client import GatewayClient
    from faturador.utils.service_codes import load_service_codes
    from faturador.utils.store import Store

    tenant = load_tenant()
    if not tenant.get("tenant_id"):
        raise ValueError("tenant.yaml sem 'tenant_id'")
    codes = load_service_codes(tenant.get("service_codes"))
    return Store(), GatewayClient(), tenant, codes


def _print_invoice(tx: dict, store=None) -> None:
    from faturador.utils.formatters import format_brl, format_tax_id
    from faturador.utils.store import CUSTOMERS

    print(f"Transação:  {tx['id']}")
    customer = store.get(CUSTOMERS, tx["customer_id"]) if store and tx.get("customer_id") else None
    if customer:
        print(f"Tomador:    {customer.get('name', '')} ({format_tax_id(customer['tax_id'])})")
    print(f"Status:     {tx.get('invoice_status') or 'none'}")
    if tx.get("invoice_number"):
        print(f"NFS-e:      {tx['invoice_number']}")
    if tx.get("invoice_environment"):
        print(f"Ambiente:   {tx['invoice_environment']}")
    if tx.get("gross_amount"):
        print(f"Valor:      {format_brl(tx['gross_amount'])}")
    if tx.get("net_amount"):
        print(f"Líquido:    {format_brl(tx['net_amount'])}")
    if tx.get("invoice_cancel_protocol"):
        print(f"Protocolo:  {tx['invoice_cancel_protocol']}")
    if tx.get("invoice_error"):
        print(f"Mensagem:   {tx['invoice_error']}")


def _cmd_env(args: list[str]) -> int:
    from faturador.services.environment import get_environment, set_environment

    store, _, tenant, _ = _context()
    tenant_id = tenant["tenant_id"]
    if not args:
        print(f"Ambiente atual: {get_environment(store, tenant_id).value}")
        return 0

    target = args[0].strip().upper()
    confirmed = False
    if target == "PRODUCTION":
        print("ATENÇÃO: em PRODUÇÃO as notas emitidas têm validade fiscal real.")
        answer = input(f"Digite {PRODUCTION_CONFIRMATION} para confirmar: ").strip()
        confirmed = answer == PRODUCTION_CONFIRMATION
        if not confirmed:
            print("Mudança cancelada.")
            return 1
    cfg = set_environment(store, tenant_id, target, confirmed=confirmed)
    print(f"Ambiente alterado para {cfg.environment.value}")
    if cfg.has_placeholder_credentials:
        print("Aviso: credenciais do gateway ainda pendentes para esta empresa.")
    return 0


def _cmd_issue(args: list[str]) -> int:
    from faturador.services.emission import issue_invoice

    if len(args) < 2:
        print(USAGE)
        return 1
    store, gateway, tenant, codes = _context()
    tx = issue_invoice(
        store,
        gateway,
        args[0],
        args[1],
        " ".join(args[2:]),
        service_codes=codes,
        emitter_tax_id=tenant.get("cnpj"),
    )
    _print_invoice(tx, store)
    return 0


def _cmd_batch(args: list[str]) -> int:
    from faturador.services.batch import run_batch
    from faturador.utils.spreadsheet import load_rows

    if not args:
        print(USAGE)
        return 1
    store, gateway, tenant, codes = _context()
    rows = load_rows(args[0])
    print(f"{len(rows)} linhas carregadas")

    def _progress(done: int, total: int, row) -> None:
        label = row.invoice_number or row.error_message or row.note or ""
        print(f"  [{done}/{total}] linha {row.index}: {row.status.value} {label}")

    report = run_batch(
        store,
        gateway,
        tenant["tenant_id"],
        rows,
        category_id=tenant.get("default_category"),
        service_codes=codes,
        emitter_tax_id=tenant.get("cnpj"),
        on_progress=_progress,
    )
    failed = [row for row in report.rows if row.status.value == "error"]
    if failed:
        print("Linhas com erro:")
        for row in failed:
            print(f"  linha {row.index}: {row.error_message}")
    print(f"Processamento concluído: {report.success} emitidas, {report.error} erros")
    return 0 if report.error == 0 else 1


def _cmd_template(args: list[str]) -> int:
    from faturador.utils.spreadsheet import write_template

    path = write_template(args[0] if args else "template_nfse_lote.xlsx")
    print(f"Template salvo em {path}")
    return 0


def _cmd_status(args: list[str]) -> int:
    from faturador.services.reconciliation import refresh_in_flight, refresh_status

    if not args:
        print(USAGE)
        return 1
    store, gateway, tenant, _ = _context()
    if args[0] == "--all":
        outcomes = refresh_in_flight(store, gateway, tenant["tenant_id"])
        for o in outcomes:
            print(f"  {o.transaction_id}: {o.status}" + (f" ({o.error})" if o.error else ""))
        print(f"{len(outcomes)} notas em processamento consultadas")
        return 0 if all(o.error is None for o in outcomes) else 1
    _print_invoice(refresh_status(store, gateway, args[0]), store)
    return 0


def _cmd_release(args: list[str]) -> int:
    from faturador.services.reconciliation import release_in_flight

    if len(args) < 2:
        print(USAGE)
        return 1
    store, _, _, _ = _context()
    _print_invoice(release_in_flight(store, args[0], " ".join(args[1:])), store)
    return 0


def _cmd_cancel(args: list[str]) -> int:
    from faturador.services.cancellation import cancel_invoice

    if len(args) < 2:
        print(USAGE)
        return 1
    store, gateway, _, _ = _context()
    _print_invoice(cancel_invoice(store, gateway, args[0], " ".join(args[1:])), store)
    return 0


def _cmd_replace(args: list[str]) -> int:
    from faturador.services.replacement import replace_invoice

    code = None
    if "--codigo" in args:
        i = args.index("--codigo")
        if i + 1 >= len(args):
            print(USAGE)
            return 1
        code = args[i + 1]
        args = args[:i] + args[i + 2 :]
    if len(args) < 2:
        print(USAGE)
        return 1
    store, gateway, _, codes = _context()
    original, replacement = replace_invoice(
        store, gateway, args[0], " ".join(args[1:]), service_code=code, service_codes=codes
    )
    _print_invoice(original, store)
    print()
    _print_invoice(replacement, store)
    return 0


def _cmd_cancel_status(args: list[str]) -> int:
    from faturador.services.cancellation import check_cancellation

    if not args:
        print(USAGE)
        return 1
    store, gateway, _, _ = _context()
    tx, result = check_cancellation(store, gateway, args[0])
    labels = {
        "approved": "aprovado",
        "rejected": "rejeitado",
        "pending": "em processamento",
        "not_requested": "nenhum pedido encontrado",
    }
    print(f"Cancelamento: {labels[result.state.value]}")
    if result.reason:
        print(f"Motivo:       {result.reason}")
    print()
    _print_invoice(tx, store)
    return 0


def _cmd_check(args: list[str]) -> int:
    """Gateway connectivity and local store health, one OK/ERRO line each."""
    from faturador.config import ENDPOINTS
    from faturador.services.environment import check_gateway, get_environment
    from faturador.services.exceptions import GatewayError, PreconditionError
    from faturador.utils.store import check_store_health

    store, gateway, tenant, codes = _context()
    tenant_id = tenant["tenant_id"]
    errors = 0
    print(f"OK   Empresa: {tenant_id}")
    print(f"OK   Codigos de servico: {len(codes)}")

    env = get_environment(store, tenant_id)
    try:
        check_gateway(store, gateway, tenant_id)
        print(f"OK   Conectividade gateway ({env.value})")
    except (GatewayError, PreconditionError) as e:
        errors += 1
        print(f"ERRO Conectividade gateway: {e}")
        print(f"     Endpoint: {ENDPOINTS[env.value]}")

    health = check_store_health(store)
    if health.ok:
        total = ", ".join(f"{name}={count}" for name, count in health.counts.items())
        print(f"OK   Armazenamento local: {total}")
    else:
        errors += 1
        print("ERRO Armazenamento local: arquivo corrompido")
    for backup in health.corrupt_backups:
        print(f"AVISO Backup encontrado: {backup}")
    return 0 if errors == 0 else 1


def _cmd_download(args: list[str]) -> int:
    from faturador.services.artifacts import fetch_artifact_url

    if not args:
        print(USAGE)
        return 1
    store, gateway, _, _ = _context()
    print(fetch_artifact_url(store, gateway, args[0], args[1] if len(args) > 1 else "pdf"))
    return 0


def _cmd_codes(args: list[str]) -> int:
    from faturador.utils.service_codes import search_service_codes

    _, _, _, codes = _context()
    for sc in search_service_codes(" ".join(args), codes):
        print(f"  {sc.code:<6} {sc.cnae:<11} {sc.aliquota}%  {sc.description}")
    return 0


COMMANDS = {
    "env": _cmd_env,
    "issue": _cmd_issue,
    "batch": _cmd_batch,
    "template": _cmd_template,
    "status": _cmd_status,
    "release": _cmd_release,
    "cancel": _cmd_cancel,
    "cancel-status": _cmd_cancel_status,
    "replace": _cmd_replace,
    "download": _cmd_download,
    "codes": _cmd_codes,
    "check": _cmd_check,
}


def _run(command: str, args: list[str]) -> int:
    from faturador.services.exceptions import (
        GatewayError,
        GatewayRejectError,
        NotFoundError,
        PreconditionError,
    )

    try:
        return COMMANDS[command](args)
    except GatewayRejectError as e:
        print(f"Rejeitada pelo gateway: {e}")
    except GatewayError as e:
        print(f"Falha no gateway (sem veredito, consulte o status antes de repetir): {e}")
    except NotFoundError as e:
        print(f"Erro: {e.args[0] if e.args else e}")
    except (PreconditionError, ValueError, FileNotFoundError) as e:
        print(f"Erro: {e}")
    return 1


def main() -> None:
    """Entry point for the faturador CLI."""
    logging.basicConfig(
        level=os.environ.get("FATURADOR_LOG_LEVEL", "WARNING").upper(),
        format="%(levelname)s %(name)s: %(message)s",
    )
    argv = sys.argv[1:]
    if not argv or argv[0] in ("-h", "--help", "help"):
        print(USAGE)
        return
    command, args = argv[0], argv[1:]

    if command == "init":
        _init_config()
        return
    if command not in COMMANDS:
        print(f"Comando desconhecido: {command}")
        print(USAGE)
        sys.exit(1)
    if command != "template" and not _preflight():
        sys.exit(1)

    code = _run(command, args)
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
