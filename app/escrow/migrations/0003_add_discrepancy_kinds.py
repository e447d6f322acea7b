"""
Add discrepancy kinds for money that moved after the payment settled.

- CHARGE_AFTER_FAILURE: Paystack confirmed a charge for a FAILED payment
- TRANSFER_REVERSED: a transfer failed or was reversed after release
"""

from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("escrow", "0002_periodic_tasks"),
    ]

    operations = [
        migrations.AlterField(
            model_name="reconciliationdiscrepancy",
            name="kind",
            field=models.CharField(
                choices=[
                    ("TRANSFER_FAILED", "Transfer failed during release"),
                    ("TRANSFER_REJECTED", "Transfer rejected by gateway"),
                    ("AMOUNT_MISMATCH", "Charged amount differs from expected"),
                    ("CHARGE_AFTER_FAILURE", "Charge confirmed after payment failed"),
                    ("TRANSFER_REVERSED", "Transfer reversed after release"),
                ],
                db_index=True,
                help_text="What went wrong",
                max_length=30,
            ),
        ),
    ]
