"""Built-in command set"""

from typing import Any, Dict, List, Mapping, Optional, Sequence

from voice_commands.core.logging import get_logger
from voice_commands.services.pipeline.base import (
    CommandCallback,
    CommandDefinition,
    EntityType,
    IntentCategory,
)
from voice_commands.services.registry import CommandRegistry

logger = get_logger(__name__)


def default_callback(
    action: str,
    data_keys: Sequence[str] = (),
    defaults: Optional[Dict[str, Any]] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> CommandCallback:
    """
    Build a callback that echoes selected parameters back as action data

    Used for built-in commands the host did not supply a handler for.
    """

    async def execute(parameters: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(defaults or {})
        for key in data_keys:
            if parameters.get(key) is not None:
                data[key] = parameters[key]
        data.update(extra or {})
        return {"action": action, "data": data}

    return execute


_NAVIGATION_VERBS = r"\b(zeig\w*|öffne\w*|gehe?|zum|zur|show|open|go)\b"

_ORDER_NEXT_ACTIONS = (
    {"action": "checkout", "label": "Zur Kasse"},
    {"action": "continue_shopping", "label": "Weiter einkaufen"},
)


def _builtin_groups(handlers: Mapping[str, CommandCallback]) -> Dict[str, List[CommandDefinition]]:
    def handler(name: str, fallback: CommandCallback) -> CommandCallback:
        return handlers.get(name, fallback)

    product = EntityType.PRODUCT.value
    quantity = EntityType.QUANTITY.value
    size = EntityType.SIZE.value
    table = EntityType.TABLE.value
    status = EntityType.STATUS.value
    payment_method = EntityType.PAYMENT_METHOD.value

    return {
        "navigation": [
            CommandDefinition(
                name="navigate_home",
                patterns=(r"\b(startseite|hauptseite|home)\b",),
                intent="navigate_home",
                category=IntentCategory.NAVIGATION,
                confidence=0.9,
                execution=handler(
                    "navigate_home", default_callback("navigate", extra={"target": "/"})
                ),
                response_template="Zurück zur Startseite.",
                suggestions=("Was möchten Sie als nächstes tun?",),
            ),
            CommandDefinition(
                name="navigate_menu",
                patterns=(r"\b(menü|menu|speisekarte)\b", _NAVIGATION_VERBS),
                intent="navigate_menu",
                category=IntentCategory.NAVIGATION,
                confidence=0.9,
                execution=handler(
                    "navigate_menu", default_callback("navigate", extra={"target": "/menu"})
                ),
                response_template="Hier ist das Menü.",
                suggestions=("Was möchten Sie als nächstes tun?",),
            ),
            CommandDefinition(
                name="navigate_cart",
                patterns=(r"\b(warenkorb|einkaufswagen|cart)\b", _NAVIGATION_VERBS),
                intent="navigate_cart",
                category=IntentCategory.NAVIGATION,
                confidence=0.9,
                execution=handler(
                    "navigate_cart", default_callback("navigate", extra={"target": "/cart"})
                ),
                response_template="Hier ist Ihr Warenkorb.",
                suggestions=("Möchten Sie zur Kasse gehen?",),
            ),
        ],
        "orders": [
            CommandDefinition(
                name="add_to_cart",
                patterns=(
                    r"\b(möchte|möchten|hätte gern|nehme|will|bestelle\w*|hinzufügen"
                    r"|kaufen|add|order|want|like)\b",
                ),
                intent="add_item",
                category=IntentCategory.TRANSACTION,
                confidence=0.85,
                required_entities=(product,),
                optional_entities=(quantity, size),
                execution=handler(
                    "add_to_cart",
                    default_callback(
                        "add_to_cart", (product, quantity, size), defaults={quantity: 1}
                    ),
                ),
                response_template="Ich habe {quantity} {product} zum Warenkorb hinzugefügt.",
                suggestions=(
                    "Möchten Sie zur Kasse gehen?",
                    "Möchten Sie noch etwas hinzufügen?",
                ),
                next_actions=_ORDER_NEXT_ACTIONS,
                dependencies=("product_availability_check", "price_validation"),
            ),
            CommandDefinition(
                name="remove_from_cart",
                patterns=(r"\b(entfernen|entferne|löschen|lösche|streichen|remove|delete)\b",),
                intent="remove_item",
                category=IntentCategory.TRANSACTION,
                confidence=0.85,
                required_entities=(product,),
                optional_entities=(quantity,),
                execution=handler(
                    "remove_from_cart",
                    default_callback("remove_from_cart", (product, quantity)),
                ),
                response_template="{product} wurde aus dem Warenkorb entfernt.",
                suggestions=("Möchten Sie etwas anderes bestellen?",),
            ),
            CommandDefinition(
                name="change_size",
                patterns=(
                    r"\b(gross|grosse|grossen|groß|große|klein|kleine|kleinen"
                    r"|mittel|large|small|medium)\b",
                ),
                intent="modify_item",
                category=IntentCategory.MODIFICATION,
                confidence=0.8,
                required_entities=(product,),
                optional_entities=(size,),
                execution=handler(
                    "change_size", default_callback("update_item", (product, size))
                ),
                response_template="{product} ist jetzt {size}.",
                suggestions=("Möchten Sie noch etwas ändern?",),
                next_actions=_ORDER_NEXT_ACTIONS,
            ),
            CommandDefinition(
                name="checkout",
                patterns=(r"\b(bezahlen|zahlen|checkout|kasse|payment|pay)\b",),
                intent="checkout",
                category=IntentCategory.TRANSACTION,
                confidence=0.9,
                optional_entities=(payment_method,),
                execution=handler(
                    "checkout",
                    default_callback(
                        "checkout", (payment_method,), extra={"target": "/checkout"}
                    ),
                ),
                response_template="Gehe zur Kasse.",
                suggestions=("Wie möchten Sie bezahlen?",),
                dependencies=("cart_validation", "payment_method_validation"),
            ),
        ],
        "information": [
            CommandDefinition(
                name="product_info",
                patterns=(r"\b(was ist|information\w*|details|beschreibung|what is)\b",),
                intent="get_info",
                category=IntentCategory.INFORMATION,
                confidence=0.8,
                required_entities=(product,),
                execution=handler(
                    "product_info", default_callback("show_product_info", (product,))
                ),
                response_template="Hier sind die Informationen zu {product}.",
                suggestions=("Möchten Sie {product} bestellen?",),
            ),
            CommandDefinition(
                name="price_check",
                patterns=(r"\b(was kostet|wie viel kostet|preis|how much|price)\b",),
                intent="price_check",
                category=IntentCategory.INFORMATION,
                confidence=0.8,
                required_entities=(product,),
                execution=handler(
                    "price_check", default_callback("show_price", (product,))
                ),
                response_template="Hier ist der Preis für {product}.",
            ),
        ],
        "tables": [
            CommandDefinition(
                name="table_status",
                patterns=(
                    r"\b(tisch|table)\b",
                    r"\b(frei|free|besetzt|occupied|reserviert|reserved)\b",
                ),
                intent="table_status",
                category=IntentCategory.CONTROL,
                confidence=0.85,
                required_entities=(table, status),
                execution=handler(
                    "table_status",
                    default_callback("update_table_status", (table, status)),
                ),
                response_template="Tisch {table} ist jetzt {status}.",
            ),
        ],
        "control": [
            CommandDefinition(
                name="help",
                patterns=(r"\b(hilfe|help)\b",),
                intent="help",
                category=IntentCategory.CONTROL,
                confidence=0.9,
                execution=handler("help", default_callback("show_help")),
                response_template=(
                    "Ich kann Ihnen beim Bestellen helfen. "
                    "Sagen Sie zum Beispiel: \"Ich möchte eine Pizza\"."
                ),
            ),
            CommandDefinition(
                name="cancel",
                patterns=(r"\b(abbrechen|stopp|stop|cancel)\b",),
                intent="cancel",
                category=IntentCategory.CONTROL,
                confidence=0.9,
                execution=handler("cancel", default_callback("cancel")),
                response_template="Vorgang abgebrochen.",
            ),
        ],
    }


def register_default_commands(
    registry: CommandRegistry,
    handlers: Optional[Mapping[str, CommandCallback]] = None,
) -> List[CommandDefinition]:
    """
    Register the built-in command groups

    Args:
        registry: Target registry
        handlers: Host callbacks keyed by command name; commands without a
            handler echo their parameters back

    Returns:
        Registered definitions in registration order
    """
    registered = []
    for group_name, definitions in _builtin_groups(handlers or {}).items():
        registered.extend(registry.register_group(group_name, definitions))

    logger.info("Default commands registered", count=len(registered))
    return registered
