"""
Gemini Order Interpreter
Turns a pasted sales-chat message into structured order items using Gemini
"""
import json
import re
from typing import Dict

import google.generativeai as genai

import config
from .errors import InterpretationError


class GeminiInterpreterService:
    """Interpreter collaborator backed by Gemini instead of the HTTP endpoint"""

    def __init__(self, model_name: str = None):
        genai.configure(api_key=config.GOOGLE_API_KEY)
        self.model = genai.GenerativeModel(model_name or config.GEMINI_MODEL)

        self.interpret_prompt = """
You interpret product orders written by sales agents in Bolivia (Spanish, informal,
often copied from WhatsApp). Return every individual product mentioned.

═══════════════════════════════════════════════════
OUTPUT FORMAT (JSON ONLY, NO EXTRA TEXT)
═══════════════════════════════════════════════════
{
  "items": [
    {"name": "product name", "quantity": 1, "unitPrice": 0.0, "saleType": "RETAIL"}
  ],
  "customerName": null,
  "customerPhone": null,
  "notes": null,
  "paymentAmount": null
}

═══════════════════════════════════════════════════
RULES
═══════════════════════════════════════════════════
- One item per individual product, even when listed inside a combo or pack.
- When a combo has a single total price (e.g. "Cobrar 140 bs"), split it across the
  combo products as evenly as possible, rounded to 2 decimals, adjusting the last
  product so the parts add up to the total. Unknown price -> 0.
- Use the stated quantity; default to 1.
- Emojis are product hints (🍎 = manzana, 🥛 = leche).
- saleType is "WHOLESALE" only when the text says por mayor / mayorista; otherwise "RETAIL".
- customerName, customerPhone, notes, paymentAmount: fill only when the text states them.
- Never invent products that are not mentioned.

TEXT:
"""

    @staticmethod
    def _parse_response(response_text: str) -> Dict:
        """JSON from the model reply; tolerate markdown fences and chatter"""
        text = response_text.strip()

        if text.startswith('```'):
            lines = text.split('\n')
            text = '\n'.join([
                line for line in lines
                if not line.strip().startswith('```') and not line.strip() == 'json'
            ])

        try:
            return json.loads(text)
        except json.JSONDecodeError:
            match = re.search(r"\{[\s\S]*\}", text)
            if not match:
                raise InterpretationError("Interpreter reply is not valid JSON")
            try:
                return json.loads(match.group(0))
            except json.JSONDecodeError as e:
                raise InterpretationError(f"Interpreter reply is not valid JSON: {e}")

    def interpret(self, text: str) -> Dict:
        if not (text or '').strip():
            raise InterpretationError("Text is required")

        print(f"[GEMINI_INTERPRET] Interpreting {len(text)} chars of order text...")
        try:
            response = self.model.generate_content(
                self.interpret_prompt + text,
                generation_config={'temperature': 0.1},
            )
            response_text = response.text
        except Exception as e:
            message = str(e)
            if '429' in message or 'quota' in message.lower() or 'exhausted' in message.lower():
                raise InterpretationError("Interpreter quota exhausted, try again later", status_code=429)
            raise InterpretationError(f"Interpreter failed: {message}")

        data = self._parse_response(response_text or '')
        if not isinstance(data, dict) or not isinstance(data.get('items'), list):
            raise InterpretationError("Interpreter reply has no item list")

        print(f"[GEMINI_INTERPRET] Model returned {len(data['items'])} item(s)")
        return data
