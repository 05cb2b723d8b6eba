"""
Doxologos Payments - CLI Admin
Ferramenta de linha de comando para a equipe financeira

Uso:
    python admin_cli.py login
    python admin_cli.py payments watch <mp_payment_id>
    python admin_cli.py payments refund <payment_id> [valor]
    python admin_cli.py credits list [user_id]
    python admin_cli.py credits create <user_id> <valor> [motivo]
    python admin_cli.py refunds overview <payment_id>
    python admin_cli.py refunds notify [limite] [--dry-run]
    python admin_cli.py reminders send
"""
import asyncio
import os
import sys
import httpx
from pathlib import Path

from app.services.payment_polling import PaymentStatusPoller

BASE_URL = os.getenv("DOXOLOGOS_API_URL", "http://localhost:8080")
TOKEN_FILE = Path(".admin_token")


def save_token(token: str):
    TOKEN_FILE.write_text(token)


def load_token() -> str:
    if TOKEN_FILE.exists():
        return TOKEN_FILE.read_text().strip()
    return None


def get_headers():
    token = load_token()
    if not token:
        print("Erro: Faça login primeiro com 'python admin_cli.py login'")
        sys.exit(1)
    return {"Authorization": f"Bearer {token}"}


def error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("error", response.text)
    except ValueError:
        return response.text


def cmd_login():
    """Guarda o access token do Supabase (copiado do painel ou do navegador)"""
    token = input("Access token: ").strip()
    if not token:
        print("✗ Token vazio")
        return

    save_token(token)
    try:
        response = httpx.post(
            f"{BASE_URL}/api/credits/list",
            json={},
            headers={"Authorization": f"Bearer {token}"}
        )
        if response.status_code == 200:
            print("\n✓ Token válido e salvo!")
        else:
            print(f"✗ Token salvo, mas a API recusou: {error_message(response)}")
    except Exception as e:
        print(f"✗ Erro de conexão: {e}")


def cmd_payments_watch(payment_id: str):
    """Acompanha o pagamento a cada 3 segundos até um estado final"""

    async def check(pid: str) -> dict:
        async with httpx.AsyncClient(base_url=BASE_URL, timeout=15.0) as client:
            response = await client.post("/api/mp-check-payment", json={"payment_id": pid})
            if response.status_code != 200:
                return {"status": None, "message": error_message(response)}
            return response.json()

    def on_tick(result: dict):
        print(f"  status={result.get('status')} detalhe={result.get('status_detail')} - {result.get('message') or ''}")

    poller = PaymentStatusPoller(check, on_tick=on_tick)
    print(f"Acompanhando pagamento {payment_id} (Ctrl+C para parar)...")
    try:
        result = asyncio.run(poller.run(payment_id))
    except KeyboardInterrupt:
        print("\nInterrompido")
        return

    if result:
        print(f"\n✓ Estado final: {result.get('status')} - {result.get('message') or ''}")


def cmd_payments_refund(payment_id: str, amount: str = None):
    """Estorna pagamento no Mercado Pago"""
    payload = {"payment_id": payment_id}
    if amount:
        payload["amount"] = float(amount)

    try:
        response = httpx.post(f"{BASE_URL}/api/mp-refund", json=payload, headers=get_headers(), timeout=30.0)
        if response.status_code == 200:
            data = response.json()
            print(f"\n✓ Reembolso criado!")
            print(f"  Refund ID: {data['refund_id']}")
            print(f"  Status: {data['status']}")
            print(f"  Valor: {data['amount']}")
        else:
            print(f"✗ Erro: {error_message(response)}")
    except Exception as e:
        print(f"✗ Erro: {e}")


def cmd_credits_list(user_id: str = None):
    """Lista créditos do usuário"""
    payload = {"user_id": user_id} if user_id else {}
    try:
        response = httpx.post(f"{BASE_URL}/api/credits/list", json=payload, headers=get_headers())
        if response.status_code == 200:
            data = response.json()
            credits = data["credits"]
            print(f"\n{'='*80}")
            print(f"{'ID':<36} | {'Valor':>10} | {'Status':<10} | {'Origem':<15}")
            print(f"{'='*80}")
            for c in credits:
                print(f"{c['id']:<36} | {c['amount']:>10.2f} | {c['status']:<10} | {(c['source_type'] or '')[:15]:<15}")
            balance = data["balance"]
            print(f"\nSaldo disponível: {balance.get('available', 0):.2f} "
                  f"(reservado: {balance.get('reserved', 0):.2f}, usado: {balance.get('consumed', 0):.2f})")
        else:
            print(f"✗ Erro: {error_message(response)}")
    except Exception as e:
        print(f"✗ Erro: {e}")


def cmd_credits_create(user_id: str, amount: str, reason: str = None):
    """Cria crédito manual (somente admin)"""
    try:
        response = httpx.post(
            f"{BASE_URL}/api/credits/create",
            json={"user_id": user_id, "amount": float(amount), "source_type": "manual", "source_reason": reason},
            headers=get_headers()
        )
        if response.status_code == 201:
            credit = response.json()["credit"]
            print(f"\n✓ Crédito criado!")
            print(f"  ID: {credit['id']}")
            print(f"  Valor: {credit['currency']} {credit['amount']:.2f}")
        else:
            print(f"✗ Erro: {error_message(response)}")
    except Exception as e:
        print(f"✗ Erro: {e}")


def cmd_refunds_overview(payment_id: str):
    """Lista reembolsos de um pagamento"""
    try:
        response = httpx.post(
            f"{BASE_URL}/api/manual-refund/overview",
            json={"payment_id": payment_id},
            headers=get_headers()
        )
        if response.status_code == 200:
            refunds = response.json()["refunds"]
            for r in refunds:
                print(f"{r['id']} | {r['kind']:<8} | {r['amount']} | aviso: {r['notification_status']}")
            print(f"\nTotal: {len(refunds)} reembolsos")
        else:
            print(f"✗ Erro: {error_message(response)}")
    except Exception as e:
        print(f"✗ Erro: {e}")


def cmd_refunds_notify(limit: str = "10", dry_run: bool = False):
    """Processa a fila de avisos de reembolso"""
    headers = {}
    notify_key = os.getenv("MANUAL_REFUND_NOTIFY_KEY")
    if notify_key:
        headers["x-function-key"] = notify_key

    try:
        response = httpx.post(
            f"{BASE_URL}/api/manual-refund/notify",
            json={"limit": int(limit), "dry_run": dry_run},
            headers=headers,
            timeout=60.0
        )
        if response.status_code == 200:
            data = response.json()
            for r in data["results"]:
                print(f"  {r['id']}: {r['status']} {r.get('error') or ''}")
            print(f"\n✓ Enviados: {data['processed']} (dry_run={data['dry_run']})")
        else:
            print(f"✗ Erro: {error_message(response)}")
    except Exception as e:
        print(f"✗ Erro: {e}")


def cmd_reminders_send():
    """Dispara os lembretes de pagamento pendente do dia"""
    reminder_key = os.getenv("PAYMENT_REMINDER_FUNCTION_KEY")
    headers = {"x-function-key": reminder_key} if reminder_key else get_headers()

    try:
        response = httpx.post(
            f"{BASE_URL}/api/send-pending-payment-reminders",
            headers=headers,
            timeout=120.0
        )
        if response.status_code == 200:
            data = response.json()
            for err in data["errors"]:
                print(f"  ✗ {err}")
            print(f"\n✓ Enviados: {data['reminders_sent']} (já avisados hoje: {data['reminders_skipped']})")
        else:
            print(f"✗ Erro: {error_message(response)}")
    except Exception as e:
        print(f"✗ Erro: {e}")


def print_help():
    print("""
Doxologos Payments - CLI Admin
==============================

Comandos disponíveis:

  python admin_cli.py login                                  - Salvar access token
  python admin_cli.py payments watch <mp_payment_id>         - Acompanhar pagamento (3s)
  python admin_cli.py payments refund <payment_id> [valor]   - Estornar no Mercado Pago

  python admin_cli.py credits list [user_id]                 - Listar créditos
  python admin_cli.py credits create <user_id> <valor> [motivo]
                                                             - Criar crédito manual

  python admin_cli.py refunds overview <payment_id>          - Reembolsos do pagamento
  python admin_cli.py refunds notify [limite] [--dry-run]    - Enviar avisos pendentes

  python admin_cli.py reminders send                         - Lembretes de pagamento pendente

Variáveis de ambiente:
  DOXOLOGOS_API_URL          URL da API (padrão http://localhost:8080)
  MANUAL_REFUND_NOTIFY_KEY   Chave x-function-key do notify
  PAYMENT_REMINDER_FUNCTION_KEY  Chave x-function-key dos lembretes
""")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print_help()
        sys.exit(0)

    cmd = sys.argv[1].lower()
    args = sys.argv[2:]

    if cmd == "login":
        cmd_login()
    elif cmd == "payments":
        if len(args) >= 2 and args[0] == "watch":
            cmd_payments_watch(args[1])
        elif len(args) >= 2 and args[0] == "refund":
            cmd_payments_refund(args[1], args[2] if len(args) > 2 else None)
        else:
            print("Uso: payments [watch|refund] <payment_id>")
    elif cmd == "credits":
        if args and args[0] == "list":
            cmd_credits_list(args[1] if len(args) > 1 else None)
        elif len(args) >= 3 and args[0] == "create":
            cmd_credits_create(args[1], args[2], args[3] if len(args) > 3 else None)
        else:
            print("Uso: credits list [user_id] | credits create <user_id> <valor> [motivo]")
    elif cmd == "refunds":
        if len(args) >= 2 and args[0] == "overview":
            cmd_refunds_overview(args[1])
        elif args and args[0] == "notify":
            rest = [a for a in args[1:] if a != "--dry-run"]
            cmd_refunds_notify(rest[0] if rest else "10", "--dry-run" in args)
        else:
            print("Uso: refunds overview <payment_id> | refunds notify [limite] [--dry-run]")
    elif cmd == "reminders":
        if args and args[0] == "send":
            cmd_reminders_send()
        else:
            print("Uso: reminders send")
    elif cmd == "help":
        print_help()
    else:
        print(f"Comando desconhecido: {cmd}")
        print_help()
