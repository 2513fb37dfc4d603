# parkbot/services/messages.py
"""User-facing texts in every supported language. Missing keys fall back to English."""

TRANSLATIONS = {
    "en": {
        "welcome": "👋 Welcome to Parkiraj!\n\nLink your car with /link <license_plate>, then use /reserve to book a space.",
        "help": ("❓ Commands\n"
                 "/link <plate> — link your license plate\n"
                 "/reserve — reserve a free space\n"
                 "/status — your active reservations\n"
                 "/spaces — free spaces per zone\n"
                 "/wallet — your TON wallet\n"
                 "/preferences — notification settings\n"
                 "/lang — change language"),
        "link_usage": "🔗 To link your account, use the command:\n/link <license_plate>\n\nExample: /link ABC123",
        "link_invalid": "❌ '{plate}' does not look like a license plate. Example: /link ABC123",
        "link_success": "✅ Your account is now linked to {plate}.",
        "not_linked": "🔗 Your account is not linked yet. Send /link <license_plate> and try again.",
        "not_linked_payment_kept": ("🔗 Your account is not linked yet, so the reservation could not be made. Your payment is kept.\n"
                                    "1. Send /link <license_plate>\n2. Then send this payment reference to finish:\n{tx_reference}"),
        "space_unavailable": "😔 Space #{space_id} is no longer available.",
        "space_taken_after_payment": ("😔 Space #{space_id} was taken by someone else while your payment was being confirmed.\n"
                                      "Your payment is safe and has been flagged for a refund — support will contact you."),
        "payment_not_verified": "❌ Payment verification failed. Please contact support.",
        "malformed_event": "⚠️ That button has expired. Please start again with /reserve.",
        "generic_error": "⚠️ Something went wrong. Please try again in a moment.",
        "unknown_input": "❓ Unknown command. Use /help for the list of commands.",
        "reserve_choose_space": "🅿️ Choose a free space:",
        "reserve_no_spaces": "😔 There are no free spaces right now.",
        "reserve_processing": "⏳ Processing…",
        "reserve_free_success": "✅ Space #{space_id} ({zone_name}) is reserved for {license_plate} until {end_time}.",
        "reserve_choose_payment": "💎 {zone_name} is a premium zone.\nSpace #{space_id} costs {amount_ton} TON for {hours} h. How would you like to pay?",
        "stars_invoice_title": "Parking space #{space_id}",
        "stars_invoice_description": "{zone_name}, space #{space_id}, plate {license_plate}",
        "stars_price_label": "Reservation",
        "stars_payment_success": "✅ Payment received! Space #{space_id} in {zone_name} is reserved for {license_plate}.",
        "ton_payment_success": "✅ TON payment verified! Space #{space_id} in {zone_name} is reserved for {license_plate}.",
        "ton_payment_instructions": ("💎 Send exactly {amount_ton} TON to:\n{recipient_address}\n\n"
                                     "Space #{space_id} ({zone_name}). When the transfer is done, press the button below "
                                     "and send me the transaction hash."),
        "payment_enter_tx": "🧾 Send the transaction hash of your TON transfer.",
        "payment_waiting_tx": "Waiting for the transaction hash…",
        "payment_tx_unknown": "❓ I could not find a pending payment for that transaction. Choose a space with /reserve first.",
        "payment_tx_rejected": "❌ That transaction could not be verified ({reason}). Please contact support.",
        "payment_tx_pending": "⏳ That transaction is not confirmed yet. Send the same hash again in a minute.",
        "reserve_cancelled": "Reservation cancelled.",
        "precheckout_invalid": "Invalid payment data",
        "language_choose": "🌍 Choose your language:",
        "language_changed": "✅ Language changed to {language}.",
        "status_none": "📋 You have no active reservations.",
        "status_header": "📋 Your reservations:",
        "status_line": "• Space #{space_id} until {end_time}",
        "spaces_header": "🅿️ Free spaces:",
        "spaces_line": "• {zone_name}: {count}",
        "wallet_saved": "👛 Wallet {address} saved.",
        "wallet_none": "👛 No wallet connected. Send your TON wallet address to connect it.",
        "wallet_show": "👛 Connected wallet: {address}",
        "preferences_on": "🔔 Notifications are on.",
        "preferences_off": "🔕 Notifications are off.",
        "app_open": "🌐 Tap the button below to open the web app:",
        "btn_pay_stars": "⭐ Pay with Telegram Stars",
        "btn_pay_ton": "💎 Pay with TON",
        "btn_payment_sent": "✅ I've paid",
        "btn_cancel": "✖ Cancel",
        "btn_open_app": "🌐 Open web app",
        "btn_toggle_notifications": "🔔 Toggle notifications",
    },
    "sr": {
        "welcome": "👋 Dobrodošli u Parkiraj!\n\nPovežite auto komandom /link <registarska_tablica>, zatim koristite /reserve.",
        "help": ("❓ Komande\n"
                 "/link <tablica> — poveži registarsku tablicu\n"
                 "/reserve — rezerviši slobodno mesto\n"
                 "/status — vaše aktivne rezervacije\n"
                 "/spaces — slobodna mesta po zonama\n"
                 "/wallet — vaš TON novčanik\n"
                 "/preferences — podešavanja obaveštenja\n"
                 "/lang — promena jezika"),
        "link_usage": "🔗 Da povežete nalog, koristite komandu:\n/link <registarska_tablica>\n\nPrimer: /link ABC123",
        "link_invalid": "❌ '{plate}' ne izgleda kao registarska tablica. Primer: /link ABC123",
        "link_success": "✅ Vaš nalog je povezan sa {plate}.",
        "not_linked": "🔗 Vaš nalog još nije povezan. Pošaljite /link <tablica> i pokušajte ponovo.",
        "not_linked_payment_kept": ("🔗 Vaš nalog još nije povezan, pa rezervacija nije napravljena. Uplata je sačuvana.\n"
                                    "1. Pošaljite /link <tablica>\n2. Zatim pošaljite ovu referencu uplate:\n{tx_reference}"),
        "space_unavailable": "😔 Mesto #{space_id} više nije dostupno.",
        "space_taken_after_payment": ("😔 Mesto #{space_id} je zauzeo neko drugi dok se vaša uplata potvrđivala.\n"
                                      "Uplata je sačuvana i označena za povraćaj — podrška će vas kontaktirati."),
        "payment_not_verified": "❌ Provera uplate nije uspela. Kontaktirajte podršku.",
        "malformed_event": "⚠️ Dugme je isteklo. Počnite ponovo sa /reserve.",
        "generic_error": "⚠️ Došlo je do greške. Pokušajte ponovo za trenutak.",
        "unknown_input": "❌ Nepoznata komanda. Koristite /help za listu komandi.",
        "reserve_choose_space": "🅿️ Izaberite slobodno mesto:",
        "reserve_no_spaces": "😔 Trenutno nema slobodnih mesta.",
        "reserve_processing": "⏳ Obrada…",
        "reserve_free_success": "✅ Mesto #{space_id} ({zone_name}) je rezervisano za {license_plate} do {end_time}.",
        "reserve_choose_payment": "💎 {zone_name} je premium zona.\nMesto #{space_id} košta {amount_ton} TON za {hours} h. Kako želite da platite?",
        "stars_invoice_title": "Parking mesto #{space_id}",
        "stars_invoice_description": "{zone_name}, mesto #{space_id}, tablica {license_plate}",
        "stars_price_label": "Rezervacija",
        "stars_payment_success": "✅ Uplata primljena! Mesto #{space_id} u zoni {zone_name} je rezervisano za {license_plate}.",
        "ton_payment_success": "✅ TON uplata potvrđena! Mesto #{space_id} u zoni {zone_name} je rezervisano za {license_plate}.",
        "ton_payment_instructions": ("💎 Pošaljite tačno {amount_ton} TON na:\n{recipient_address}\n\n"
                                     "Mesto #{space_id} ({zone_name}). Kada završite transfer, pritisnite dugme ispod "
                                     "i pošaljite hash transakcije."),
        "payment_enter_tx": "🧾 Pošaljite hash transakcije vašeg TON transfera.",
        "payment_waiting_tx": "Čekam hash transakcije…",
        "payment_tx_unknown": "❓ Nisam pronašao uplatu na čekanju za tu transakciju. Prvo izaberite mesto sa /reserve.",
        "payment_tx_rejected": "❌ Transakcija nije potvrđena ({reason}). Kontaktirajte podršku.",
        "payment_tx_pending": "⏳ Transakcija još nije potvrđena. Pošaljite isti hash ponovo za minut.",
        "reserve_cancelled": "Rezervacija otkazana.",
        "precheckout_invalid": "Neispravni podaci o plaćanju",
        "language_choose": "🌍 Izaberite jezik:",
        "language_changed": "✅ Jezik promenjen na {language}.",
        "status_none": "📋 Nemate aktivnih rezervacija.",
        "status_header": "📋 Vaše rezervacije:",
        "status_line": "• Mesto #{space_id} do {end_time}",
        "spaces_header": "🅿️ Slobodna mesta:",
        "spaces_line": "• {zone_name}: {count}",
        "wallet_saved": "👛 Novčanik {address} je sačuvan.",
        "wallet_none": "👛 Novčanik nije povezan. Pošaljite adresu vašeg TON novčanika.",
        "wallet_show": "👛 Povezan novčanik: {address}",
        "preferences_on": "🔔 Obaveštenja su uključena.",
        "preferences_off": "🔕 Obaveštenja su isključena.",
        "app_open": "🌐 Kliknite na dugme ispod da otvorite web aplikaciju:",
        "btn_pay_stars": "⭐ Plati Telegram Stars",
        "btn_pay_ton": "💎 Plati TON-om",
        "btn_payment_sent": "✅ Platio sam",
        "btn_cancel": "✖ Otkaži",
        "btn_open_app": "🌐 Otvori web aplikaciju",
        "btn_toggle_notifications": "🔔 Uključi/isključi obaveštenja",
    },
    "de": {
        "welcome": "👋 Willkommen bei Parkiraj!\n\nVerknüpfen Sie Ihr Auto mit /link <kennzeichen> und reservieren Sie mit /reserve.",
        "link_usage": "🔗 Um Ihr Konto zu verknüpfen, verwenden Sie den Befehl:\n/link <kennzeichen>\n\nBeispiel: /link ABC123",
        "link_invalid": "❌ '{plate}' sieht nicht wie ein Kennzeichen aus. Beispiel: /link ABC123",
        "link_success": "✅ Ihr Konto ist jetzt mit {plate} verknüpft.",
        "not_linked": "🔗 Ihr Konto ist noch nicht verknüpft. Senden Sie /link <kennzeichen> und versuchen Sie es erneut.",
        "not_linked_payment_kept": ("🔗 Ihr Konto ist noch nicht verknüpft. Ihre Zahlung bleibt erhalten.\n"
                                    "1. Senden Sie /link <kennzeichen>\n2. Senden Sie dann diese Zahlungsreferenz:\n{tx_reference}"),
        "space_unavailable": "😔 Parkplatz #{space_id} ist nicht mehr verfügbar.",
        "space_taken_after_payment": ("😔 Parkplatz #{space_id} wurde vergeben, während Ihre Zahlung bestätigt wurde.\n"
                                      "Ihre Zahlung ist gesichert und zur Erstattung markiert — der Support meldet sich."),
        "payment_not_verified": "❌ Zahlungsprüfung fehlgeschlagen. Bitte kontaktieren Sie den Support.",
        "malformed_event": "⚠️ Diese Schaltfläche ist abgelaufen. Bitte beginnen Sie erneut mit /reserve.",
        "generic_error": "⚠️ Etwas ist schiefgelaufen. Bitte versuchen Sie es gleich noch einmal.",
        "unknown_input": "❓ Unbekannter Befehl. Verwenden Sie /help für die Befehlsliste.",
        "reserve_choose_space": "🅿️ Wählen Sie einen freien Parkplatz:",
        "reserve_no_spaces": "😔 Derzeit sind keine Parkplätze frei.",
        "reserve_free_success": "✅ Parkplatz #{space_id} ({zone_name}) ist für {license_plate} bis {end_time} reserviert.",
        "reserve_choose_payment": "💎 {zone_name} ist eine Premium-Zone.\nParkplatz #{space_id} kostet {amount_ton} TON für {hours} h. Wie möchten Sie bezahlen?",
        "stars_payment_success": "✅ Zahlung erhalten! Parkplatz #{space_id} in {zone_name} ist für {license_plate} reserviert.",
        "ton_payment_success": "✅ TON-Zahlung bestätigt! Parkplatz #{space_id} in {zone_name} ist für {license_plate} reserviert.",
        "payment_enter_tx": "🧾 Senden Sie den Transaktions-Hash Ihrer TON-Überweisung.",
        "payment_tx_unknown": "❓ Zu dieser Transaktion gibt es keine offene Zahlung. Wählen Sie zuerst einen Parkplatz mit /reserve.",
        "reserve_cancelled": "Reservierung abgebrochen.",
        "language_choose": "🌍 Sprache wählen:",
        "language_changed": "✅ Sprache geändert zu {language}.",
        "status_none": "📋 Sie haben keine aktiven Reservierungen.",
        "status_header": "📋 Ihre Reservierungen:",
        "status_line": "• Parkplatz #{space_id} bis {end_time}",
        "spaces_header": "🅿️ Freie Parkplätze:",
        "wallet_saved": "👛 Wallet {address} gespeichert.",
        "btn_pay_stars": "⭐ Mit Telegram Stars bezahlen",
        "btn_pay_ton": "💎 Mit TON bezahlen",
        "btn_payment_sent": "✅ Ich habe bezahlt",
        "btn_cancel": "✖ Abbrechen",
    },
}

LANGUAGE_NAMES = {"en": "English", "sr": "Srpski", "de": "Deutsch"}


def t(key: str, lang: str = "en", **replacements) -> str:
    """Translate `key` into `lang` and fill {placeholders}."""
    table = TRANSLATIONS.get(lang) or TRANSLATIONS["en"]
    text = table.get(key) or TRANSLATIONS["en"].get(key) or key
    for placeholder, value in replacements.items():
        text = text.replace("{" + placeholder + "}", str(value))
    return text
